"""
Seed a local database with demo guests, messages and escalations.

Usage:
    python -m guestdesk.seed
"""

import logging
from datetime import timedelta

from guestdesk.config import settings
from guestdesk.logging_utils import setup_logging
from guestdesk.storage import (
    SessionLocal,
    create_escalation,
    create_message,
    create_user,
    init_db,
    utcnow,
)

logger = logging.getLogger(__name__)

DEMO_GUESTS = [
    ("15550001111", "John Doe"),
    ("15550002222", "Maria Garcia"),
    ("15550003333", None),
]

DEMO_CONVERSATIONS = {
    "15550001111": [
        ("inbound", "Hi, what time is check-in?"),
        ("outbound", "Check-in starts at 3 PM. Let us know if you arrive earlier."),
        ("inbound", "Great, thanks!"),
    ],
    "15550002222": [
        ("inbound", "The heating in room 204 is not working."),
    ],
}


def seed() -> None:
    init_db()
    now = utcnow()
    with SessionLocal() as db:
        for wa_id, name in DEMO_GUESTS:
            create_user(db, wa_id=wa_id, name=name)

        for wa_id, conversation in DEMO_CONVERSATIONS.items():
            start = now - timedelta(minutes=len(conversation))
            for offset, (direction, text) in enumerate(conversation):
                create_message(
                    db,
                    wa_id=wa_id,
                    text=text,
                    direction=direction,
                    message_id=f"seed-{wa_id}-{offset}",
                    timestamp=start + timedelta(minutes=offset),
                )

        create_escalation(db, user_id="15550002222", message="The heating in room 204 is not working.")
        create_escalation(
            db,
            user_id="15550001111",
            message="Asked for early check-in",
            status="resolved",
            created_at=now - timedelta(minutes=45),
            updated_at=now - timedelta(minutes=30),
        )
    logger.info(f"Seeded {len(DEMO_GUESTS)} guests")


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)
    seed()
