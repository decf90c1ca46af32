from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str
    password: str
    clientVersion: Optional[str] = Field(default=None, max_length=50)


class ActivityRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: str = Field(default="activity", max_length=32)
