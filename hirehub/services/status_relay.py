# hirehub/services/status_relay.py
"""
Carries `resume:status` events from stream workers to the web process.

Workers have no socket connections, so their orchestrator publishes through
`RedisStatusPublisher`; the web process runs `StatusRelaySubscriber`, which
feeds each event into the local RealtimeService.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from hirehub.models.evaluation import StatusEvent

logger = logging.getLogger(__name__)

STATUS_CHANNEL = "evaluations:status"


class RedisStatusPublisher:
    def __init__(self, client, channel: str = STATUS_CHANNEL):
        self.client = client
        self.channel = channel

    async def send_resume_status(self, user_id: str, event: StatusEvent) -> int:
        message = json.dumps({"userId": user_id, "event": event.model_dump(mode="json")})
        return await self.client.publish(self.channel, message)


class StatusRelaySubscriber:
    def __init__(self, client, realtime, channel: str = STATUS_CHANNEL, retry_delay: float = 1.0):
        self.client = client
        self.realtime = realtime
        self.channel = channel
        self.retry_delay = retry_delay
        self._task: Optional[asyncio.Task] = None

    def handle(self, raw: Any) -> int:
        try:
            data: Dict[str, Any] = json.loads(raw)
            event = StatusEvent.model_validate(data["event"])
            user_id = str(data["userId"])
        except (ValueError, KeyError, TypeError, PydanticValidationError):
            logger.warning("Dropping malformed status relay message: %.200r", raw)
            return 0
        return self.realtime.send_resume_status(user_id, event)

    async def _listen_once(self) -> None:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("Status relay subscribed to %s", self.channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                self.handle(message.get("data"))
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def _listen(self) -> None:
        while True:
            try:
                await self._listen_once()
                logger.warning("Status relay subscription ended, resubscribing in %ss", self.retry_delay)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Status relay lost its subscription, reconnecting in %ss", self.retry_delay)
            await asyncio.sleep(self.retry_delay)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._listen())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
