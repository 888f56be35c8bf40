import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from dojo.core.dates import utcnow
from dojo.db.session import Base


class BeltAward(Base):
    """Belt promotion history. The student's current rank is the most recent award."""

    __tablename__ = "belt_awards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # white, yellow, orange, ...
    awarded_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    student = relationship("Student", backref="belt_awards")
