"""Best-effort fan-out of job status/progress events.

Every update is published on a pub/sub channel for live listeners and also
kept in a short bounded history so clients that miss pushes can poll for
"updates since T".
"""

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from redis.asyncio import Redis

from logworker.errors import NotifyError
from logworker.jobs.models import JobUpdate

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


def _matches(update: Payload, since: int, user_id: Optional[str], job_id: Optional[str]) -> bool:
    if update.get("timestamp", 0) <= since:
        return False
    if user_id and update.get("userId") != user_id:
        return False
    if job_id and update.get("jobId") != job_id:
        return False
    return True


class Notifier(ABC):
    """Publishes JobUpdates. ``notify`` never raises."""

    async def notify(self, update: JobUpdate) -> bool:
        payload = update.to_payload()
        try:
            await self._publish(payload)
        except Exception as exc:
            logger.warning("Failed to publish update for job %s: %s", update.job_id, exc)
            return False
        return True

    @abstractmethod
    async def _publish(self, payload: Payload) -> None:
        ...

    @abstractmethod
    async def recent_updates(
        self,
        since: int = 0,
        user_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> List[Payload]:
        """Stored updates newer than ``since`` (epoch ms), newest first."""
        ...

    async def latest_update(self, job_id: str, user_id: Optional[str] = None) -> Optional[Payload]:
        updates = await self.recent_updates(0, user_id=user_id, job_id=job_id)
        if not updates:
            return None
        return max(updates, key=lambda u: u.get("timestamp", 0))


class RedisNotifier(Notifier):
    """PUBLISH on ``channel`` and keep the newest ``max_stored`` in a list."""

    def __init__(
        self,
        redis: Redis,
        channel: str = "job-updates",
        history_key: str = "recent-job-updates",
        max_stored: int = 100,
    ):
        self._redis = redis
        self.channel = channel
        self.history_key = history_key
        self.max_stored = max_stored

    async def _publish(self, payload: Payload) -> None:
        message = json.dumps(payload)
        try:
            await self._redis.publish(self.channel, message)
            await self._redis.lpush(self.history_key, message)
            await self._redis.ltrim(self.history_key, 0, self.max_stored - 1)
        except Exception as exc:
            raise NotifyError(str(exc)) from exc

    async def recent_updates(self, since=0, user_id=None, job_id=None) -> List[Payload]:
        try:
            raw = await self._redis.lrange(self.history_key, 0, self.max_stored - 1)
        except Exception as exc:
            logger.error("Error fetching job updates: %s", exc)
            return []

        updates = []
        for item in raw:
            try:
                update = json.loads(item)
            except ValueError:
                logger.warning("Skipping malformed job update entry")
                continue
            if _matches(update, since, user_id, job_id):
                updates.append(update)
        return updates


class InMemoryNotifier(Notifier):
    """Keeps the bounded history in process. Used when Redis is not configured."""

    def __init__(self, max_stored: int = 100):
        self._history: Deque[Payload] = deque(maxlen=max_stored)

    async def _publish(self, payload: Payload) -> None:
        self._history.appendleft(payload)

    async def recent_updates(self, since=0, user_id=None, job_id=None) -> List[Payload]:
        return [dict(u) for u in self._history if _matches(u, since, user_id, job_id)]
