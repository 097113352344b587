from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from server.db.base_class import Base

COURSE_PUBLISHED = "published"


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    # Major units of the configured CURRENCY
    price = Column(Numeric(10, 2), default=0, nullable=False)
    instructor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # draft | published | archived
    status = Column(String(16), default="draft", nullable=False, index=True)
    student_count = Column(Integer, default=0, nullable=False)
    thumbnail = Column(String(500), nullable=True)

    instructor = relationship("User")
