"""Invoice model - sales invoices issued by a tenant."""
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class Invoice(Base):
    """Sales invoice. Counted against max_invoices per calendar month."""

    __tablename__ = 'invoice'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id'), nullable=False, index=True)
    number = Column(String(40), nullable=True)
    customer_name = Column(String(200), nullable=True)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<Invoice(id={self.id}, number='{self.number}')>"

    def to_dict(self):
        return {
            'id': self.id,
            'number': self.number,
            'customer_name': self.customer_name,
            'total': float(self.total or 0),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
