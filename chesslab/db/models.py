from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint, func

from chesslab.db.base import Base


class StoredValue(Base):
    __tablename__ = "stored_values"
    __table_args__ = (UniqueConstraint("namespace", "key", name="uq_stored_values_namespace_key"),)

    id = Column(Integer, primary_key=True, index=True)
    namespace = Column(String(128), nullable=False, index=True)
    key = Column(String(128), nullable=False)
    payload_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
