"""Employee model - payroll employees (not platform users)."""
import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, CheckConstraint
from stockflow.database import Base, BigIntegerType
from stockflow.utils.dates import utcnow


class EmployeeStatus(enum.Enum):
    ACTIVE = 'ACTIVE'
    ON_LEAVE = 'ON_LEAVE'
    TERMINATED = 'TERMINATED'


class Employee(Base):
    """Employee. Everyone except TERMINATED counts against max_employees."""

    __tablename__ = 'employee'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    tenant_id = Column(BigIntegerType, ForeignKey('tenant.id'), nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    document_number = Column(String(40), nullable=True)
    status = Column(String(20), nullable=False, default=EmployeeStatus.ACTIVE.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('ACTIVE', 'ON_LEAVE', 'TERMINATED')", name='check_employee_status'),
    )

    def __repr__(self):
        return f"<Employee(id={self.id}, full_name='{self.full_name}', status='{self.status}')>"

    def to_dict(self):
        return {'id': self.id, 'full_name': self.full_name, 'status': self.status}
