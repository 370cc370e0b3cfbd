"""Log Processing Worker - FastAPI application.

The lifespan builds every collaborator from settings (Supabase, Redis or
their in-memory stand-ins), hands them to a JobController, and starts the
worker pool that feeds jobs to it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from logworker.api.v1 import jobs as jobs_api
from logworker.api.v1 import updates as updates_api
from logworker.api.v1.health import router as health_root_router
from logworker.api.v1.router import v1_router
from logworker.config import Settings, settings as default_settings
from logworker.db.job_store import InMemoryJobStore, SupabaseJobStore
from logworker.db.redis_client import create_redis_client
from logworker.db.supabase_client import create_supabase_client
from logworker.jobs.controller import JobController
from logworker.jobs.in_process_queue import InProcessQueue
from logworker.jobs.redis_queue import RedisQueue
from logworker.logging_setup import setup_logging
from logworker.notify.notifier import InMemoryNotifier, RedisNotifier
from logworker.processing.scanner import FileScanner
from logworker.storage.blob import LocalBlobStorage, SupabaseBlobStorage
from logworker.storage.retrieval import FileRetriever
from logworker.storage.scratch import ScratchArea

logger = logging.getLogger(__name__)


class Worker:
    """Everything one worker process owns, built once at startup."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.redis = None
        self.supabase = None

        needs_redis = settings.queue_backend == "redis"
        needs_supabase = "supabase" in (settings.store_backend, settings.blob_backend)
        if needs_redis:
            self.redis = create_redis_client(settings)
        if needs_supabase:
            self.supabase = create_supabase_client(settings)

        if settings.store_backend == "supabase":
            self.store = SupabaseJobStore(self.supabase, table=settings.supabase_table)
        else:
            self.store = InMemoryJobStore()

        if settings.blob_backend == "supabase":
            blob_storage = SupabaseBlobStorage(self.supabase, bucket=settings.supabase_bucket)
        else:
            blob_storage = LocalBlobStorage(settings.local_blob_dir)

        if self.redis is not None:
            self.notifier = RedisNotifier(
                self.redis,
                channel=settings.updates_channel,
                history_key=settings.recent_updates_key,
                max_stored=settings.max_stored_updates,
            )
        else:
            self.notifier = InMemoryNotifier(max_stored=settings.max_stored_updates)

        self.scratch = ScratchArea(settings.scratch_dir, ttl_hours=settings.scratch_ttl_hours)
        self.controller = JobController(
            store=self.store,
            notifier=self.notifier,
            retriever=FileRetriever(
                blob_storage,
                self.scratch,
                max_attempts=settings.download_max_attempts,
                backoff_base=settings.download_backoff_seconds,
            ),
            scanner=FileScanner.from_settings(settings),
            scratch=self.scratch,
            keywords=settings.keyword_list,
            job_timeout=settings.job_timeout_seconds,
            terminal_write_timeout=settings.terminal_write_timeout_seconds,
        )

        if self.redis is not None:
            self.dispatcher = RedisQueue(
                self.redis,
                self.controller.run,
                queue_name=settings.queue_name,
                concurrency=settings.worker_concurrency,
                worker_id=settings.worker_id,
            )
        else:
            self.dispatcher = InProcessQueue(
                self.controller.run, concurrency=settings.worker_concurrency
            )

    async def start(self) -> None:
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()
        removed = self.scratch.cleanup_expired()
        if removed:
            logger.info("Removed %d expired scratch file(s)", removed)
        if self.redis is not None:
            await self.redis.aclose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        setup_logging(settings.log_level)
        logger.info("Starting log processing worker on port %d", settings.api_port)
        logger.info(
            "Backends: queue=%s store=%s blob=%s",
            settings.queue_backend, settings.store_backend, settings.blob_backend,
        )
        logger.info("Monitored keywords: %s", ", ".join(settings.keyword_list))

        worker = Worker(settings)
        await worker.start()
        app.state.worker = worker

        # Wire collaborators into API endpoints
        jobs_api.set_dispatcher(worker.dispatcher)
        jobs_api.set_store(worker.store)
        updates_api.set_dispatcher(worker.dispatcher)
        updates_api.set_notifier(worker.notifier)

        yield

        logger.info("Shutting down log processing worker")
        await worker.stop()

    app = FastAPI(
        title="Log Processing Worker",
        description="Streams uploaded log files into entry, error, keyword and IP statistics",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()
