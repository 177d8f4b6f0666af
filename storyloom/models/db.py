from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime

from storyloom.core.database import Base


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(60), primary_key=True)  # run_id
    status = Column(
        String(20), nullable=False, default="queued"
    )  # queued, running, failed, abandoned, done
    stage = Column(String(30), nullable=False, default="initial")
    progress = Column(Integer, default=0)
    current_step = Column(String(120), default="Waiting")
    page_count = Column(Integer, nullable=True)
    storybook_id = Column(String(60), nullable=True)
    error_code = Column(String(60), nullable=True)
    error_message = Column(String(300), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
