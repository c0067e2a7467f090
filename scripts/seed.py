"""Seed script to populate the guestbook with sample data."""

import asyncio
import sys

sys.path.insert(0, ".")

from sqlalchemy import select

from guestbook.db import get_db_context, init_db
from guestbook.models import Message, MessageComment, MessageLike
from guestbook.services.interactions import default_avatar, user_identifier


SAMPLE_MESSAGES = [
    ("Alice Johnson", "alice@example.com", "Lovely site, keep it up!"),
    ("Bob Smith", "bob@example.com", "Stopped by to say hi."),
    ("Carol Williams", "carol@example.com", "Greetings from Lisbon."),
    ("Dan Brown", "dan@example.com", "Found you through the blog post, nice work."),
    ("Eve Adams", "eve@example.com", "The dark mode is great."),
    ("Frank Moore", "frank@example.com", "First time here. Hello everyone!"),
    ("Grace Lee", "grace@example.com", "Signing the guestbook like it's 1999."),
]


async def seed_database():
    """Seed the database with sample data."""
    await init_db()

    async with get_db_context() as session:
        # Check if already seeded
        existing = await session.execute(select(Message).limit(1))
        if existing.scalar_one_or_none():
            print("Database already seeded. Skipping.")
            return

        print("Seeding database...")

        messages = [
            Message(user_name=name, user_email=email, user_image=default_avatar(name), msg=msg)
            for name, email, msg in SAMPLE_MESSAGES
        ]
        session.add_all(messages)
        await session.flush()
        print(f"Created {len(messages)} messages")

        first, second = messages[0], messages[1]
        session.add_all([
            MessageLike(
                message_id=first.id,
                user_identifier=user_identifier(None, "Bob Smith", "bob@example.com"),
            ),
            MessageLike(
                message_id=first.id,
                user_identifier=user_identifier(None, "Carol Williams", "carol@example.com"),
            ),
            MessageComment(
                message_id=first.id,
                user_name="Bob Smith",
                user_email="bob@example.com",
                user_image=default_avatar("Bob Smith"),
                comment="Agreed!",
            ),
            MessageComment(
                message_id=second.id,
                user_name="Alice Johnson",
                user_email="alice@example.com",
                user_image=default_avatar("Alice Johnson"),
                comment="Hi Bob!",
            ),
        ])
        print("Created likes and comments")

    print("\n✅ Database seeded successfully!")


if __name__ == "__main__":
    asyncio.run(seed_database())
