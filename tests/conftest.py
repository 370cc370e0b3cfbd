import pytest

from logworker.db.job_store import InMemoryJobStore
from logworker.errors import PersistenceError
from logworker.jobs.controller import JobController
from logworker.jobs.models import JobDescriptor
from logworker.notify.notifier import InMemoryNotifier
from logworker.processing.scanner import FileScanner
from logworker.storage.blob import BlobStorage
from logworker.storage.retrieval import FileRetriever
from logworker.storage.scratch import ScratchArea

KEYWORDS = ["error", "exception", "fail", "timeout"]


class FakeBlobStorage(BlobStorage):
    """Returns queued results in order; exceptions in the queue are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def download(self, locator):
        self.calls.append(locator)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FailingStore(InMemoryJobStore):
    async def update_status(self, job_id, status, progress, error=None):
        raise PersistenceError("database unavailable")

    async def update_final_stats(self, job_id, stats, status, progress):
        raise PersistenceError("database unavailable")


@pytest.fixture
def scratch(tmp_path):
    return ScratchArea(str(tmp_path / "scratch"))


@pytest.fixture
def write_log(tmp_path):
    def _write(lines, name="app.log"):
        path = tmp_path / name
        path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
        return str(path)
    return _write


@pytest.fixture
def descriptor():
    return JobDescriptor(
        job_id="job-1",
        source_locator="user-1/app.log",
        display_name="app.log",
        size_hint=1024,
        owner_id="user-1",
    )


@pytest.fixture
def make_controller(scratch):
    def _make(blob, store=None, notifier=None, scanner=None, job_timeout=5.0, **kwargs):
        return JobController(
            store=store or InMemoryJobStore(),
            notifier=notifier or InMemoryNotifier(),
            retriever=FileRetriever(blob, scratch, sleep=RecordingSleep()),
            scanner=scanner or FileScanner(memory_sampler=lambda: 0.0),
            scratch=scratch,
            keywords=KEYWORDS,
            job_timeout=job_timeout,
            **kwargs,
        )
    return _make
