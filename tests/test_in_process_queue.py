import asyncio

from logworker.errors import JobError
from logworker.jobs.in_process_queue import InProcessQueue
from logworker.jobs.models import JobDescriptor


def _descriptor(i):
    return JobDescriptor(job_id=f"job-{i}", source_locator=f"u/{i}.log")


async def test_pool_runs_jobs_concurrently_up_to_limit():
    running, peak = 0, 0
    release = asyncio.Event()

    async def handler(descriptor):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await release.wait()
        running -= 1

    queue = InProcessQueue(handler, concurrency=2)
    await queue.start()
    for i in range(5):
        await queue.submit(_descriptor(i))

    await asyncio.sleep(0.05)
    status = await queue.queue_status()
    assert status["active"] == 2
    assert status["waiting"] == 3

    release.set()
    await asyncio.wait_for(queue.join(), timeout=2)
    await queue.stop()

    assert peak == 2
    assert (await queue.queue_status())["completed"] == 5


async def test_failed_jobs_do_not_stop_the_pool():
    seen = []

    async def handler(descriptor):
        seen.append(descriptor.job_id)
        if descriptor.job_id == "job-0":
            raise JobError("boom")
        if descriptor.job_id == "job-1":
            raise RuntimeError("unexpected")

    queue = InProcessQueue(handler, concurrency=1)
    await queue.start()
    for i in range(3):
        await queue.submit(_descriptor(i))
    await asyncio.wait_for(queue.join(), timeout=2)
    await queue.stop()

    status = await queue.queue_status()
    assert seen == ["job-0", "job-1", "job-2"]
    assert status["failed"] == 2
    assert status["completed"] == 1
