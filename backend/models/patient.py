"""Patient model definitions."""

from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import backref, relationship
from backend.database import Base
from backend.models.identifiers import new_id
from backend.models.user import User


class Patient(Base):
    """Represents a patient record owned by the clinic records module."""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)

    user = relationship(User, backref=backref("patient", uselist=False))
