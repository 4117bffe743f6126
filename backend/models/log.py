# backend/models/log.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Index, func
from database import Base

# Audit trail of cart and order actions (CART_ADD, ORDER_CREATE, ORDER_STATUS_CHANGE, ...)
class Log(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String(50), index=True)
    resource = Column(String(50))
    # Id of the cart/order the action touched, for per-resource history
    resource_id = Column(Integer, nullable=True)
    status = Column(String(20), index=True)
    ip = Column(String(64), nullable=True)
    meta = Column(JSON, nullable=True)

    __table_args__ = (Index("ix_logs_resource", "resource", "resource_id"),)
