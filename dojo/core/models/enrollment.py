import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dojo.core.dates import utcnow
from dojo.db.session import Base


class Enrollment(Base):
    """Student enrollment in a class. Only status='active' rows count for program filtering."""

    __tablename__ = "enrollments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(UUID(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, inactive, completed, dropped
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    student = relationship("Student", backref="enrollments")
    dojo_class = relationship("DojoClass")
