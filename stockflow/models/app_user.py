"""AppUser model - platform users that belong to one or more tenants."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from werkzeug.security import generate_password_hash, check_password_hash
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class AppUser(Base):
    """AppUser model - platform users with local authentication."""

    __tablename__ = 'app_user'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(200), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    user_tenants = relationship('UserTenant', back_populates='user')

    def set_password(self, password):
        """Set password hash (for local auth)."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash (for local auth)."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def first_name(self):
        """First word of the full name, falling back to the email's local part."""
        if self.full_name:
            return self.full_name.split()[0]
        return self.email.split('@')[0]

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}')>"
