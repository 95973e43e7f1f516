from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime
from opsboard.core.database import Base

ROLES = ("admin", "manager", "employee", "client")

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="employee")  # admin, manager, employee, client
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_reviewer(self) -> bool:
        return self.role in ("admin", "manager")
