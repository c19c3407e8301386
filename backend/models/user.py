"""User model definitions."""

from sqlalchemy import Column, ForeignKey, String
from backend.database import Base
from backend.models.identifiers import new_id


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    role = Column(String, nullable=False)  # ADMIN/THERAPIST/INTERN/PATIENT
    # Interns act on behalf of their supervising therapist.
    supervisor_id = Column(
        String(36),
        ForeignKey("therapists.id", use_alter=True, name="fk_users_supervisor_id"),
        nullable=True,
    )
