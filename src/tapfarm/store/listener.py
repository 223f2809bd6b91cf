"""Consumes purchase_succeeded events from Redis pub/sub.

The payment webhook publishes one JSON message per successful purchase:

    {"kind": "energy_recharge" | "ball_skin", "user_id": 123, "item_kind_id": 7}
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tapfarm.database import get_session_factory
from tapfarm.store.service import PurchaseKind, apply_purchase
from tapfarm.users.service import UserNotFoundError

logger = structlog.get_logger()


class PurchaseListener:
    """Subscribes to the purchase channel and grants the bought items."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        channel: str,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.redis = redis_client
        self.channel = channel
        self._session_factory = session_factory
        self._running = False

    async def start(self) -> None:
        """Start listening to the purchase channel."""
        self._running = True
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except RedisError as e:
            logger.error("purchase_listener_unavailable", channel=self.channel, error=str(e))
            await pubsub.close()
            return
        logger.info("purchase_listener_started", channel=self.channel)

        try:
            while self._running:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=1.0,
                    )
                except RedisError as e:
                    logger.error("purchase_listener_connection_lost", channel=self.channel, error=str(e))
                    break
                if message is None:
                    continue
                await self.handle_message(message.get("data", b""))
        except asyncio.CancelledError:
            pass
        finally:
            try:
                await pubsub.unsubscribe()
            except RedisError as e:
                logger.warning("purchase_listener_unsubscribe_failed", channel=self.channel, error=str(e))
            await pubsub.close()
            self._running = False
            logger.info("purchase_listener_stopped")

    async def stop(self) -> None:
        """Signal the listener to stop."""
        self._running = False

    async def handle_message(self, data: bytes | str) -> bool:
        """Apply one purchase event. Returns False if it was skipped."""
        try:
            if isinstance(data, bytes):
                data = data.decode()
            payload = json.loads(data)
            kind = PurchaseKind(payload["kind"])
            user_id = int(payload["user_id"])
            raw_item = payload.get("item_kind_id")
            item_kind_id = int(raw_item) if raw_item is not None else None
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError):
            logger.warning("purchase_invalid_message", channel=self.channel, data=str(data)[:200])
            return False

        factory = self._session_factory or get_session_factory()
        try:
            async with factory() as db:
                await apply_purchase(db, kind, user_id, item_kind_id)
        except (SQLAlchemyError, UserNotFoundError, ValueError):
            logger.exception("purchase_grant_failed", kind=kind.value, user_id=user_id)
            return False

        logger.info("purchase_granted", kind=kind.value, user_id=user_id)
        return True
