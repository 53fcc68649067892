import asyncio
import json
import uuid
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from broadcast import LocalBroadcast, make_frame
from constants import REDIS_HOST, REDIS_PASSWORD, REDIS_PORT
from logging_config import get_logger
from redis_keys import REDIS_ROOM_CHANNEL, REDIS_ROOM_CHANNEL_PATTERN, REDIS_ROOM_CHANNEL_PREFIX

logger = get_logger(__name__)


def create_redis_client() -> aioredis.Redis:
    logger.info(f"Creating Redis client for {REDIS_HOST}:{REDIS_PORT}")
    return aioredis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)


class RedisBroadcast(LocalBroadcast):
    """Fans room broadcasts out through Redis pub/sub.

    Each instance tracks only its own connections. Room broadcasts are
    published to ``room:channel:{room}``, and a pattern listener hands every
    published frame to local connections. This instance's own frames go to
    the members captured when ``broadcast`` was called; frames from other
    instances go to the room's current local members. Private sends never
    leave the instance.
    """

    def __init__(self, redis_client: aioredis.Redis):
        super().__init__()
        self.redis_client = redis_client
        self.instance_id = uuid.uuid4().hex
        # (room, frame) pairs waiting to be published, in router order
        self._pending: asyncio.Queue = asyncio.Queue()
        self._publisher_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None

    def get_room_channel_name(self, room: str) -> str:
        return REDIS_ROOM_CHANNEL.format(slug=room)

    def broadcast(self, room: str, event: str, payload: Any, exclude: Optional[str] = None) -> None:
        frame = make_frame(event, payload)
        frame["origin"] = self.instance_id
        # Audience is fixed now, not when the frame comes back from Redis
        frame["recipients"] = self.recipients_of(room, exclude)
        frame["exclude"] = exclude
        self._pending.put_nowait((room, frame))

    async def start(self):
        await self.redis_client.ping()
        logger.info("Redis broadcast backend connected")
        self._publisher_task = asyncio.create_task(self._run_publisher())
        self._listener_task = asyncio.create_task(self._run_listener())

    async def stop(self):
        for task in (self._publisher_task, self._listener_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._publisher_task = None
        self._listener_task = None
        await self.redis_client.aclose()
        logger.info("Redis broadcast backend stopped")

    async def publish_next(self):
        """Publish the oldest pending broadcast."""
        room, frame = await self._pending.get()
        channel = self.get_room_channel_name(room)
        try:
            subscribers = await self.redis_client.publish(channel, json.dumps(frame))
            logger.debug(f"Published '{frame['type']}' to channel {channel}, {subscribers} subscribers")
        except redis.RedisError as e:
            logger.error(f"Failed to publish '{frame['type']}' for room {room}: {e}", exc_info=True)

    async def _run_publisher(self):
        while True:
            await self.publish_next()

    async def _run_listener(self):
        logger.info(f"Starting Redis pub/sub listener on {REDIS_ROOM_CHANNEL_PATTERN}")
        pubsub = self.redis_client.pubsub()
        try:
            await pubsub.psubscribe(REDIS_ROOM_CHANNEL_PATTERN)
            while True:
                try:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                except redis.RedisError as e:
                    logger.error(f"Error reading from Redis pub/sub: {e}", exc_info=True)
                    await asyncio.sleep(1.0)
                    continue
                if message is not None:
                    self.handle_pubsub_message(message)
        except asyncio.CancelledError:
            logger.info("Redis pub/sub listener cancelled")
            raise
        finally:
            await pubsub.aclose()

    def handle_pubsub_message(self, message: dict):
        if message.get("type") not in ("message", "pmessage"):
            return
        channel = message.get("channel", "")
        if not channel.startswith(REDIS_ROOM_CHANNEL_PREFIX):
            logger.warning(f"Ignoring message on unexpected channel {channel}")
            return
        room = channel[len(REDIS_ROOM_CHANNEL_PREFIX):]
        try:
            frame = json.loads(message["data"])
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Error parsing message from Redis for room {room}: {e}")
            return
        origin = frame.pop("origin", None)
        recipients = frame.pop("recipients", None)
        exclude = frame.pop("exclude", None)
        if origin == self.instance_id and recipients is not None:
            self.deliver_to(recipients, frame)
        else:
            self.deliver_to_group(room, frame, exclude)
