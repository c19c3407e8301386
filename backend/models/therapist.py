"""Therapist model definitions."""

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import backref, relationship
from backend.database import Base
from backend.models.identifiers import new_id
from backend.models.user import User


class Therapist(Base):
    """Represents a physiotherapist who accepts appointments."""
    __tablename__ = "therapists"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    crefito = Column(String)
    specialty = Column(String)

    user = relationship(
        User,
        foreign_keys=[user_id],
        backref=backref("therapist", uselist=False),
    )
