from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType


class SessionEntity(Base):
    __tablename__ = "sessions"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    template_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
