import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    TIMESTAMP,
    ForeignKey,
    Enum,
    UniqueConstraint,
    func,
    JSON,
)
from sqlalchemy.orm import relationship
from .database import Base


class UserRole(str, enum.Enum):
    user = "USER"
    admin = "ADMIN"


class RegistrationStatus(str, enum.Enum):
    registered = "REGISTERED"
    cancelled = "CANCELLED"
    attended = "ATTENDED"


# Statuses that hold a seat and count as attendance history.
ACTIVE_REGISTRATION_STATUSES = (RegistrationStatus.registered, RegistrationStatus.attended)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, values_callable=_enum_values), nullable=False, default=UserRole.user)
    name = Column(String(255))
    location = Column(String(255))
    preferences = Column(JSON, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    events = relationship("Event", back_populates="creator", foreign_keys="Event.created_by")
    registrations = relationship(
        "Registration",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    activities = relationship("Activity", back_populates="user", cascade="all, delete-orphan")


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100), nullable=False, index=True)
    date = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    time = Column(String(50))
    location = Column(String(255))
    image_url = Column(String(500))
    capacity = Column(Integer, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", back_populates="events", foreign_keys=[created_by])
    registrations = relationship("Registration", back_populates="event", cascade="all, delete-orphan")


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (UniqueConstraint("user_id", "event_id", name="uq_registration"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    status = Column(
        Enum(RegistrationStatus, values_callable=_enum_values),
        nullable=False,
        default=RegistrationStatus.registered,
        index=True,
    )
    qr_code_data = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="registrations")
    event = relationship("Event", back_populates="registrations")


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(100), nullable=True)
    target_name = Column(String(255), nullable=False)
    link = Column(String(500), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)

    user = relationship("User", back_populates="activities")
