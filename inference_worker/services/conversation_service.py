# services/conversation_service.py
"""
Conversation Context Store

Keeps, per user, the bounded transcript used to prime the next inference
call.

Storage Structure in Redis:
- conv:{userId} → JSON with turns + metadata

{
    "user_id": "user-456",
    "created_at": "2025-10-21T10:00:00+00:00",
    "last_updated": "2025-10-21T10:15:00+00:00",
    "turns": [
        {"query": "...", "response": "..."},
        ...
    ]
}
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.errors import ContextStoreFailure
from inference_worker.core.logger import logger
from inference_worker.schemas.job_models import ConversationContext, Turn


def trim_turns(turns: List[Turn], max_turns: int, max_chars: int) -> List[Turn]:
    """
    Evict oldest turns until both bounds hold.

    A single turn larger than `max_chars` is evicted too, leaving an
    empty transcript.
    """
    kept = list(turns)
    total = sum(turn.size for turn in kept)
    while kept and (len(kept) > max_turns or total > max_chars):
        total -= kept.pop(0).size
    return kept


class ConversationService:
    """
    Manages per-user conversation context in Redis.

    Not safe for concurrent appends to the same user; the task pipeline
    serializes jobs per user before calling in here.
    """

    def __init__(self, redis_client: redis.Redis, settings: Settings = default_settings):
        self.redis = redis_client
        self.max_turns = settings.MAX_CONTEXT_TURNS
        self.max_chars = settings.MAX_CONTEXT_CHARS
        self.conversation_ttl = settings.CONVERSATION_TTL

        logger.info(
            "ConversationService initialized",
            extra={
                "max_turns": self.max_turns,
                "max_chars": self.max_chars,
                "conversation_ttl": self.conversation_ttl
            }
        )

    @staticmethod
    def _key(user_id: str) -> str:
        return f"conv:{user_id}"

    # ========================================================================
    # CONVERSATION RETRIEVAL
    # ========================================================================

    def _load(self, user_id: str, operation: str) -> Optional[Dict[str, Any]]:
        try:
            data = self.redis.get(self._key(user_id))
        except redis.RedisError as e:
            raise ContextStoreFailure(
                f"Failed to read conversation for {user_id}: {e}",
                operation=operation,
                user_id=user_id,
            ) from e

        if not data:
            return None

        try:
            conversation = json.loads(data)
            conversation["turns"] = [Turn(**turn) for turn in conversation.get("turns", [])]
        except (TypeError, ValueError) as e:
            raise ContextStoreFailure(
                f"Failed to parse conversation JSON for {user_id}: {e}",
                operation=operation,
                user_id=user_id,
            ) from e
        return conversation

    def get(self, user_id: str) -> ConversationContext:
        """
        Retrieve a user's transcript.

        Args:
            user_id: Owner of the conversation

        Returns:
            ConversationContext; empty when the user has no stored turns

        Raises:
            ContextStoreFailure: Redis unreachable or the document is corrupt
        """
        conversation = self._load(user_id, operation="get")

        if conversation is None:
            logger.info(f"Conversation not found, starting fresh", extra={"user_id": user_id})
            return ConversationContext.empty(user_id)

        context = ConversationContext(user_id=user_id, turns=conversation["turns"])
        logger.info(
            f"Retrieved conversation",
            extra={
                "user_id": user_id,
                "turns_count": len(context.turns),
                "last_updated": conversation.get("last_updated")
            }
        )
        return context

    # ========================================================================
    # CONVERSATION UPDATE
    # ========================================================================

    def append(self, user_id: str, turn: Turn) -> None:
        """
        Append one validated turn, evicting the oldest turns past the bounds.

        Creates the conversation if it doesn't exist. Calling twice with the
        same turn stores it twice.

        Raises:
            ContextStoreFailure: read or write failed; stored context is unchanged
        """
        conversation = self._load(user_id, operation="append")
        now = datetime.now(timezone.utc).isoformat()

        if conversation is None:
            conversation = {
                "user_id": user_id,
                "created_at": now,
                "turns": []
            }
            logger.info(f"Creating new conversation", extra={"user_id": user_id})

        turns = conversation["turns"] + [turn]
        kept = trim_turns(turns, self.max_turns, self.max_chars)

        if len(kept) < len(turns):
            logger.info(
                f"Trimmed old turns from conversation",
                extra={
                    "user_id": user_id,
                    "removed_count": len(turns) - len(kept),
                    "remaining_turns": len(kept)
                }
            )

        conversation["last_updated"] = now
        conversation["turns"] = [t.model_dump() for t in kept]
        payload = json.dumps(conversation)

        try:
            if self.conversation_ttl:
                self.redis.setex(name=self._key(user_id), time=self.conversation_ttl, value=payload)
            else:
                self.redis.set(name=self._key(user_id), value=payload)
        except redis.RedisError as e:
            raise ContextStoreFailure(
                f"Failed to save conversation turn for {user_id}: {e}",
                operation="append",
                user_id=user_id,
            ) from e

        logger.info(
            f"Saved conversation turn",
            extra={"user_id": user_id, "total_turns": len(kept)}
        )
