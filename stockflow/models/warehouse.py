"""Warehouse model."""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class Warehouse(Base):
    """Stock location. Counted against max_warehouses."""

    __tablename__ = 'warehouse'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id'), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    address = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Warehouse(id={self.id}, name='{self.name}')>"

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'address': self.address}
