from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from db.base import Base


class SessionAuditLog(Base):
    __tablename__ = "SessionAuditLogs"

    AuditID = Column(Integer, primary_key=True, autoincrement=True)
    EventType = Column(String(50), nullable=False)
    Reason = Column(String(100))
    EmployeeID = Column(Integer)
    TokenFingerprint = Column(String(32))
    ClientVersion = Column(String(50))
    Details = Column(String(500))
    CreatedAt = Column(DateTime, server_default=func.now())
