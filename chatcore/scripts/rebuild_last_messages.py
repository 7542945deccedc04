"""
Rebuild the last_messages projection from the message log.

Each conversation is recomputed in its own transaction; a failure is logged
and counted, and the run moves on to the next conversation.

Usage:
    python -m chatcore.scripts.rebuild_last_messages
"""

import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.database import session_scope
from chatcore.logging_config import setup_logging
from chatcore.models.conversation import Conversation
from chatcore.services.message_service import MessageService

logger = logging.getLogger(__name__)


async def rebuild_last_messages(db: AsyncSession) -> dict:
    """Recompute the last message of every conversation."""
    logger.info("[RebuildLastMessages] Starting rebuild...")

    result = await db.execute(select(Conversation.id).order_by(Conversation.created_at))
    conversation_ids = list(result.scalars().all())
    logger.info(f"[RebuildLastMessages] Found {len(conversation_ids)} conversations")

    service = MessageService(db)
    updated = 0
    cleared = 0
    errors = 0

    for conversation_id in conversation_ids:
        try:
            newest = await service.refresh_last_message(conversation_id)
        except Exception as e:
            errors += 1
            logger.error(f"[RebuildLastMessages] Error rebuilding {conversation_id}: {e}")
            continue

        if newest is None:
            cleared += 1
        else:
            updated += 1

    summary = {
        "total_conversations": len(conversation_ids),
        "updated": updated,
        "cleared": cleared,
        "errors": errors,
    }
    logger.info(f"[RebuildLastMessages] Rebuild complete: {summary}")
    return summary


async def _run() -> dict:
    async with session_scope() as db:
        return await rebuild_last_messages(db)


def main():
    setup_logging()
    asyncio.run(_run())


if __name__ == "__main__":
    main()
