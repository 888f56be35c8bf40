import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dojo.core.dates import utcnow
from dojo.db.session import Base


class Attendance(Base):
    """One row per student per attended class session."""

    __tablename__ = "attendance"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="present")  # present, absent, late, excused
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    student = relationship("Student", foreign_keys=[student_id])
