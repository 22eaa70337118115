"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from guestdesk.storage import Base, new_object_id, utcnow


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class EscalationStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class User(Base):
    """
    A guest, keyed by their WhatsApp id.

    Table: users
    """
    __tablename__ = "users"

    wa_id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    last_interaction = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class Message(Base):
    """
    One chat message, inbound from a guest or outbound from staff.

    Table: messages
    message_id is unique when present; rows without one are allowed.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_wa_id_timestamp", "wa_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    wa_id = Column(String, nullable=False, index=True)
    message_id = Column(String, nullable=True, unique=True)
    direction = Column(String(8), nullable=False)
    text = Column(Text, nullable=False)
    image = Column(String, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)


class Escalation(Base):
    """
    A guest message flagged for human review.

    Table: escalations
    Lifecycle: pending -> resolved. There is no way back to pending.
    """
    __tablename__ = "escalations"

    id = Column(String(24), primary_key=True, default=new_object_id)
    user_id = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=EscalationStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
