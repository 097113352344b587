from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from server.db.base_class import Base

ENROLLMENT_ACTIVE = "active"
ENROLLMENT_COMPLETED = "completed"
LIVE_ENROLLMENT_STATUSES = (ENROLLMENT_ACTIVE, ENROLLMENT_COMPLETED)

_LIVE_ONLY = text("status IN ('active', 'completed')")


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    instructor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Empty for direct enrollments made before payments were recorded
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    enrolled_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    status = Column(String(16), default=ENROLLMENT_ACTIVE, nullable=False)
    progress = Column(JSON, default=dict)

    course = relationship("Course")

    __table_args__ = (
        # At most one live enrollment per student and course
        Index(
            "uq_enrollments_student_course_live",
            "student_id",
            "course_id",
            unique=True,
            sqlite_where=_LIVE_ONLY,
            postgresql_where=_LIVE_ONLY,
        ),
    )
