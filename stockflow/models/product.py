"""Product model."""
from sqlalchemy import Column, String, Boolean, Numeric, DateTime, ForeignKey
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class Product(Base):
    """Catalog product. Counted against max_products."""

    __tablename__ = 'product'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id'), nullable=False, index=True)
    sku = Column(String, nullable=True)
    name = Column(String, nullable=False)
    sale_price = Column(Numeric(10, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'sku': self.sku, 'sale_price': float(self.sale_price or 0)}
