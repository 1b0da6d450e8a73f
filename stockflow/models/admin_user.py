"""AdminUser model - platform operators (no tenant association)."""
from sqlalchemy import Column, String, DateTime
from werkzeug.security import generate_password_hash, check_password_hash
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class AdminUser(Base):
    """AdminUser model - platform operators.

    Admin users have NO tenant_id. They drive manual subscription
    transitions (activate, suspend, reactivate, change plan) for any tenant.
    """

    __tablename__ = 'admin_users'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_login = Column(DateTime, nullable=True)

    def set_password(self, password):
        """Set password hash."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def update_last_login(self):
        self.last_login = utcnow()

    def __repr__(self):
        return f"<AdminUser(id={self.id}, email='{self.email}')>"
