"""Working hours model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from backend.database import Base
from backend.models.identifiers import new_id


class WorkingHours(Base):
    """Weekly open/close window for one therapist on one weekday.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). Times are
    ``HH:MM`` strings in clinic wall-clock time.
    """
    __tablename__ = "working_hours"

    id = Column(String(36), primary_key=True, default=new_id)
    therapist_id = Column(String(36), ForeignKey("therapists.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)

    __table_args__ = (
        UniqueConstraint("therapist_id", "day_of_week", name="uq_working_hours_therapist_day"),
    )
