"""
Chat Engine composition root.

Wires every service from settings plus the three external collaborators
(cache backend, durable store, notification dispatcher) and owns the
write-queue worker lifecycle.

Usage:
    async with chat_engine_lifespan(store) as engine:
        room = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        await engine.messages.create_message(room.room_id, "ws-1", SenderType.VISITOR, "hi")
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from chat_engine.application.services.ai_relay import AIRelay
from chat_engine.application.services.ephemeral_state import EphemeralStateTracker
from chat_engine.application.services.handoff_workflows import HandoffWorkflows
from chat_engine.application.services.message_pipeline import MessagePipeline
from chat_engine.application.services.notification_outbox import NotificationOutbox
from chat_engine.application.services.participant_manager import CapacityGuard, ParticipantManager
from chat_engine.application.services.room_store import RoomStore
from chat_engine.core.config.settings import Settings, get_settings
from chat_engine.core.exceptions import CacheConnectionError
from chat_engine.core.interfaces.cache import CacheBackend
from chat_engine.core.interfaces.durable_store import DurableStore
from chat_engine.core.interfaces.notifications import AIBridge, NotificationDispatcher
from chat_engine.core.logging.logger import get_logger, setup_logging
from chat_engine.core.resilience.circuit_breaker import CircuitBreaker
from chat_engine.domain.models import utc_now
from chat_engine.infrastructure.cache.redis_client import RedisClient
from chat_engine.infrastructure.cache.resilient_cache import ResilientCache
from chat_engine.infrastructure.message_queue.redis_stream_notifier import RedisStreamNotifier
from chat_engine.infrastructure.persistence.write_queue import DurableWriteQueue, WriteQueueConfig

logger = get_logger(__name__)


@dataclass
class ChatEngine:
    cache: ResilientCache
    write_queue: DurableWriteQueue
    ai_relay: AIRelay
    notifications: NotificationOutbox
    rooms: RoomStore
    messages: MessagePipeline
    capacity: CapacityGuard
    participants: ParticipantManager
    handoffs: HandoffWorkflows
    ephemeral: EphemeralStateTracker

    @classmethod
    def build(
        cls,
        backend: CacheBackend,
        store: DurableStore,
        notifier: NotificationDispatcher | None = None,
        ai_bridge: AIBridge | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        breaker: CircuitBreaker | None = None,
    ) -> "ChatEngine":
        """
        STAGE-0.4: Engine wiring

        Pass ``breaker`` to share the room cache breaker with other clients
        of the same Redis (the notification stream).
        """
        settings = settings or get_settings()

        cache = ResilientCache(
            backend,
            breaker or room_cache_breaker(settings),
            operation_timeout=settings.circuit_breaker.CACHE_OPERATION_TIMEOUT,
        )
        write_queue = DurableWriteQueue(store, WriteQueueConfig.from_settings(settings.write_queue))
        ai_relay = AIRelay(cache, ai_bridge)
        notifications = NotificationOutbox(notifier)

        common = {
            "cache": cache,
            "store": store,
            "write_queue": write_queue,
            "notifications": notifications,
            "durable_timeout": settings.durable.DURABLE_CALL_TIMEOUT,
            "clock": clock,
        }
        rooms = RoomStore(**common)
        capacity = CapacityGuard(**common)

        return cls(
            cache=cache,
            write_queue=write_queue,
            ai_relay=ai_relay,
            notifications=notifications,
            rooms=rooms,
            messages=MessagePipeline(
                **common,
                rooms=rooms,
                ai_relay=ai_relay,
                window_size=settings.messages.MESSAGE_WINDOW_SIZE,
                max_page_size=settings.messages.MESSAGE_PAGE_MAX_LIMIT,
            ),
            capacity=capacity,
            participants=ParticipantManager(**common, rooms=rooms, capacity=capacity),
            handoffs=HandoffWorkflows(**common, rooms=rooms, capacity=capacity),
            ephemeral=EphemeralStateTracker(**common, rooms=rooms),
        )

    async def start(self) -> None:
        await self.write_queue.start()

    async def stop(self) -> None:
        """Flush pending durable writes and wait for in-flight AI bridge and notification calls."""
        await self.write_queue.stop()
        await self.ai_relay.drain()
        await self.notifications.drain()


def room_cache_breaker(settings: Settings) -> CircuitBreaker:
    breaker_settings = settings.circuit_breaker
    return CircuitBreaker(
        "room_cache",
        failure_threshold=breaker_settings.CACHE_CB_FAILURE_THRESHOLD,
        cooldown_seconds=breaker_settings.CACHE_CB_COOLDOWN_SECONDS,
    )


@asynccontextmanager
async def chat_engine_lifespan(
    store: DurableStore,
    ai_bridge: AIBridge | None = None,
    settings: Settings | None = None,
) -> AsyncIterator[ChatEngine]:
    """
    Manage the engine lifecycle (startup and shutdown) against Redis.

    A Redis outage at startup is not fatal: the cache breaker degrades every
    call to the durable path until Redis comes back.
    """
    settings = settings or get_settings()
    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting chat engine",
        stage="0.1",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    redis_client = RedisClient(settings)
    try:
        await redis_client.connect()
        logger.info("Redis connected", stage="0.2")
    except CacheConnectionError as e:
        logger.warning("Redis unavailable at startup, running degraded", stage="0.2", error=str(e))

    breaker = room_cache_breaker(settings)
    notifier = RedisStreamNotifier(
        redis_client, maxlen=settings.app.NOTIFICATION_STREAM_MAXLEN, breaker=breaker
    )
    engine = ChatEngine.build(
        redis_client, store, notifier=notifier, ai_bridge=ai_bridge, settings=settings, breaker=breaker
    )
    await engine.start()
    logger.info("Chat engine startup complete", stage="0.5")

    try:
        yield engine
    finally:
        logger.info("Shutting down chat engine", stage="0.9")
        await engine.stop()
        await redis_client.disconnect()
        logger.info("Chat engine shutdown complete", stage="0.9")
