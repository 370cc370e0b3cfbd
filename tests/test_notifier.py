import json

from logworker.jobs.models import JobStatus, JobUpdate
from logworker.notify.notifier import InMemoryNotifier, RedisNotifier


class FakeRedis:
    """The handful of async list/pubsub calls the notifier uses."""

    def __init__(self, fail=False):
        self.fail = fail
        self.published = []
        self.lists = {}

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("connection refused")
        self.published.append((channel, message))

    async def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)

    async def ltrim(self, key, start, end):
        self.lists[key] = self.lists.get(key, [])[start:end + 1]

    async def lrange(self, key, start, end):
        return self.lists.get(key, [])[start:end + 1]


def _update(job_id="job-1", progress=10, timestamp=1000, **kwargs):
    return JobUpdate(
        job_id=job_id, status=JobStatus.PROCESSING, progress=progress,
        timestamp=timestamp, **kwargs,
    )


async def test_redis_notifier_publishes_and_stores_history():
    redis = FakeRedis()
    notifier = RedisNotifier(redis, channel="job-updates", history_key="recent", max_stored=2)

    for ts in (1, 2, 3):
        assert await notifier.notify(_update(timestamp=ts, user_id="u1"))

    channel, message = redis.published[0]
    assert channel == "job-updates"
    assert json.loads(message) == {
        "jobId": "job-1", "status": "processing", "progress": 10,
        "userId": "u1", "timestamp": 1,
    }
    assert [json.loads(m)["timestamp"] for m in redis.lists["recent"]] == [3, 2]


async def test_notify_swallows_transport_errors():
    notifier = RedisNotifier(FakeRedis(fail=True))
    assert await notifier.notify(_update()) is False


async def test_recent_updates_filters_by_since_user_and_job():
    notifier = InMemoryNotifier()
    await notifier.notify(_update("a", timestamp=100, user_id="u1"))
    await notifier.notify(_update("b", timestamp=200, user_id="u2"))
    await notifier.notify(_update("a", timestamp=300, user_id="u1", progress=50))

    assert [u["timestamp"] for u in await notifier.recent_updates(150)] == [300, 200]
    assert [u["jobId"] for u in await notifier.recent_updates(user_id="u2")] == ["b"]
    assert [u["progress"] for u in await notifier.recent_updates(job_id="a")] == [50, 10]


async def test_latest_update_picks_newest_timestamp():
    notifier = InMemoryNotifier()
    await notifier.notify(_update("a", timestamp=500, progress=40))
    await notifier.notify(_update("a", timestamp=400, progress=30))

    latest = await notifier.latest_update("a")
    assert latest["progress"] == 40
    assert await notifier.latest_update("missing") is None


async def test_redis_history_skips_malformed_entries():
    redis = FakeRedis()
    redis.lists["recent-job-updates"] = ["{not json", json.dumps({"jobId": "x", "timestamp": 5})]
    notifier = RedisNotifier(redis)

    assert await notifier.recent_updates() == [{"jobId": "x", "timestamp": 5}]


async def test_in_memory_history_is_bounded():
    notifier = InMemoryNotifier(max_stored=3)
    for ts in range(1, 6):
        await notifier.notify(_update(timestamp=ts))
    assert [u["timestamp"] for u in await notifier.recent_updates()] == [5, 4, 3]
