"""Task model"""

from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey
from datetime import datetime
from opsboard.core.database import Base


class Task(Base):
    __tablename__ = "tasks"
    
    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True, index=True)
    assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    due_date = Column(DateTime, nullable=True, index=True)
    priority = Column(String, default="medium")
    status = Column(String, default="todo", nullable=False)
    
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    progress = Column(Integer, default=0)
    review_cycle = Column(Integer, default=0, nullable=False)  # incrémenté à chaque rejet
    
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
