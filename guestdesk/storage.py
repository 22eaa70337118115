import logging
import secrets
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import and_, create_engine, func, inspect
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from guestdesk.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("users", "messages", "escalations")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_object_id() -> str:
    """24 hex characters, the same shape as a document-store ObjectId."""
    return secrets.token_hex(12)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from guestdesk import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and every table is present.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        existing = set(inspect(engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Insert helpers
#
# Users, messages and escalations are written by the inbound WhatsApp
# pipeline, which lives outside this service. These helpers back the seed
# command and the test suite.
# =============================================================================

def create_user(db: Session, wa_id: str, name: Optional[str] = None,
                last_interaction: Optional[datetime] = None):
    from guestdesk.models import User

    now = utcnow()
    user = User(
        wa_id=wa_id,
        name=name,
        last_interaction=last_interaction or now,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_message(
    db: Session,
    wa_id: str,
    text: str,
    direction: str = "inbound",
    message_id: Optional[str] = None,
    image: Optional[str] = None,
    timestamp: Optional[datetime] = None,
):
    from guestdesk.models import Message

    message = Message(
        wa_id=wa_id,
        message_id=message_id,
        direction=direction,
        text=text,
        image=image,
        timestamp=timestamp or utcnow(),
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def create_escalation(
    db: Session,
    user_id: str,
    message: str,
    status: str = "pending",
    created_at: Optional[datetime] = None,
    updated_at: Optional[datetime] = None,
):
    from guestdesk.models import Escalation

    created_at = created_at or utcnow()
    escalation = Escalation(
        id=new_object_id(),
        user_id=user_id,
        message=message,
        status=status,
        created_at=created_at,
        updated_at=updated_at or created_at,
    )
    db.add(escalation)
    db.commit()
    db.refresh(escalation)
    return escalation


# =============================================================================
# Read / update repository functions
# =============================================================================

def list_users_with_last_message(db: Session) -> list[dict]:
    """
    Every user with the text and timestamp of their most recent message.

    Users without messages are kept, with None for both fields.
    """
    from guestdesk.models import Message, User

    logger.info("Listing users with last message")

    ranked = (
        db.query(
            Message.wa_id.label("wa_id"),
            Message.text.label("text"),
            Message.timestamp.label("timestamp"),
            func.row_number()
            .over(partition_by=Message.wa_id, order_by=[Message.timestamp.desc(), Message.id.desc()])
            .label("rn"),
        )
        .subquery()
    )

    rows = (
        db.query(User.wa_id, User.name, ranked.c.text, ranked.c.timestamp)
        .outerjoin(ranked, and_(ranked.c.wa_id == User.wa_id, ranked.c.rn == 1))
        .all()
    )
    logger.debug(f"Users found: {len(rows)}")

    return [
        {
            "wa_id": row.wa_id,
            "name": row.name,
            "lastMessage": row.text,
            "lastTimestamp": row.timestamp,
        }
        for row in rows
    ]


def get_messages_for_user(db: Session, wa_id: str) -> list:
    """
    All messages of one conversation.

    No ordering is applied here; callers sort by timestamp.
    """
    from guestdesk.models import Message

    logger.info(f"Querying messages for wa_id={wa_id}")
    messages = db.query(Message).filter(Message.wa_id == wa_id).all()
    logger.debug(f"Retrieved {len(messages)} messages")
    return messages


def get_analytics(db: Session) -> dict:
    """
    Dashboard totals plus the mean escalation resolution time in minutes.

    responseTime is 0 when there is no resolved escalation.
    """
    from guestdesk.models import Direction, Escalation, EscalationStatus, Message

    logger.info("Computing analytics")

    total_messages = db.query(func.count(Message.id)).scalar() or 0
    total_escalations = db.query(func.count(Escalation.id)).scalar() or 0
    total_resolved = (
        db.query(func.count(Escalation.id))
        .filter(Escalation.status == EscalationStatus.RESOLVED.value)
        .scalar() or 0
    )
    total_pending = (
        db.query(func.count(Escalation.id))
        .filter(Escalation.status == EscalationStatus.PENDING.value)
        .scalar() or 0
    )
    total_users = db.query(func.count(func.distinct(Message.wa_id))).scalar() or 0
    total_sent = db.query(func.count(Message.id)).filter(Message.direction == Direction.OUTBOUND.value).scalar() or 0
    total_received = db.query(func.count(Message.id)).filter(Message.direction == Direction.INBOUND.value).scalar() or 0

    resolved_spans = (
        db.query(Escalation.created_at, Escalation.updated_at)
        .filter(Escalation.status == EscalationStatus.RESOLVED.value)
        .all()
    )
    durations = [
        (row.updated_at - row.created_at).total_seconds() / 60
        for row in resolved_spans
        if row.created_at is not None and row.updated_at is not None
    ]
    response_time = sum(durations) / len(durations) if durations else 0
    logger.debug(f"Resolved escalations: {len(durations)}, avg minutes: {response_time}")

    return {
        "totalMessages": total_messages,
        "totalEscalations": total_escalations,
        "totalResolvedEscalations": total_resolved,
        "totalPendingEscalations": total_pending,
        "totalUsers": total_users,
        "totalMessagesSent": total_sent,
        "totalMessagesReceived": total_received,
        "responseTime": response_time,
    }


def list_escalations_with_users(db: Session) -> list[dict]:
    """Escalations newest first, each left-joined to the user it belongs to."""
    from guestdesk.models import Escalation, User

    logger.info("Listing escalations")
    rows = (
        db.query(Escalation, User.name, User.wa_id)
        .outerjoin(User, User.wa_id == Escalation.user_id)
        .order_by(Escalation.created_at.desc())
        .all()
    )

    return [
        {
            "_id": escalation.id,
            "user_id": escalation.user_id,
            "message": escalation.message,
            "status": escalation.status,
            "createdAt": escalation.created_at,
            "updatedAt": escalation.updated_at,
            "userName": user_name,
            "userWaId": user_wa_id,
        }
        for escalation, user_name, user_wa_id in rows
    ]


def get_escalation(db: Session, escalation_id: str):
    from guestdesk.models import Escalation

    logger.info(f"Looking up escalation: {escalation_id}")
    result = db.query(Escalation).filter(Escalation.id == escalation_id).first()
    logger.info(f"Escalation lookup result: {'found' if result else 'not found'}")
    return result


def resolve_escalation(db: Session, escalation):
    """Mark a pending escalation resolved and bump its updated_at."""
    from guestdesk.models import EscalationStatus

    escalation.status = EscalationStatus.RESOLVED.value
    escalation.updated_at = utcnow()
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(escalation)
    logger.info(f"Escalation resolved: {escalation.id}")
    return escalation
