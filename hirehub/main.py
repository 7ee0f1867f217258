# hirehub/main.py
"""
Composition root.

`build_services` wires stores, realtime, the evaluation pipeline and dispatch
from Settings; the web app and the stream worker both start from it.

    STORE_BACKEND        memory | mongo
    EVALUATION_DISPATCH  inline | stream
"""

import logging
from typing import Optional

from fastapi import FastAPI

from hirehub.api.deps import register_error_handlers
from hirehub.api.v1.chat import router as chat_router
from hirehub.api.v1.evaluations import router as evaluations_router
from hirehub.api.v1.queue import router as queue_router
from hirehub.api.v1.realtime import router as realtime_router
from hirehub.core.config import Settings, configure_logging, get_settings
from hirehub.db import mongo
from hirehub.repositories.chat import InMemoryChatStore, MongoChatStore
from hirehub.repositories.evaluations import InMemoryEvaluationStore, MongoEvaluationStore
from hirehub.services.chat import ChatService
from hirehub.services.dispatch import InlineDispatcher, StreamDispatcher
from hirehub.services.evaluation import EvaluationOrchestrator
from hirehub.services.extraction import TextExtractor
from hirehub.services.grading import ModelFallbackGrader
from hirehub.services.queue import InMemoryJobStore, RedisJobStore, ensure_group_exists, get_redis_client
from hirehub.services.queue_monitor import QueueMonitor
from hirehub.services.rate_limit import build_limiter
from hirehub.services.realtime import RealtimeService
from hirehub.services.scorers.base import get_scorer
from hirehub.services.status_relay import RedisStatusPublisher, StatusRelaySubscriber
from hirehub.services.storage import ResumeStorage

logger = logging.getLogger(__name__)


class Services:
    """Everything a process needs, plus its startup/shutdown hooks."""

    def __init__(self, settings: Settings, role: str = "web"):
        if settings.STORE_BACKEND not in ("memory", "mongo"):
            raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
        if settings.EVALUATION_DISPATCH not in ("inline", "stream"):
            raise ValueError(f"Unknown EVALUATION_DISPATCH: {settings.EVALUATION_DISPATCH}")

        self.settings = settings
        self.role = role
        self.use_mongo = settings.STORE_BACKEND == "mongo"
        self.use_stream = settings.EVALUATION_DISPATCH == "stream"

        db = mongo.get_db() if self.use_mongo else None
        self.chat_store = MongoChatStore(db) if self.use_mongo else InMemoryChatStore()
        self.evaluation_store = MongoEvaluationStore(db) if self.use_mongo else InMemoryEvaluationStore()

        self.redis = get_redis_client(settings.REDIS_URL) if self.use_stream else None
        self.job_store = RedisJobStore(self.redis) if self.use_stream else InMemoryJobStore()

        self.chat = ChatService(
            self.chat_store,
            rate_limiter=build_limiter(settings.RATE_LIMIT_MESSAGES, settings.RATE_LIMIT_MESSAGES_WINDOW_SEC),
        )
        self.realtime = RealtimeService(self.chat, evaluations=self.evaluation_store,
                                        queue_limit=settings.WS_SEND_QUEUE_LIMIT)

        # workers have no sockets; their status events go through Redis to the web process
        notifier = RedisStatusPublisher(self.redis) if role == "worker" and self.use_stream else self.realtime
        self.relay = StatusRelaySubscriber(self.redis, self.realtime) if role == "web" and self.use_stream else None

        self.storage = ResumeStorage(settings)
        grader = ModelFallbackGrader(
            get_scorer(settings.SCORER_ADAPTER, settings),
            settings.SCORER_MODELS,
            max_attempts=settings.SCORER_MAX_ATTEMPTS,
            base_delay=settings.SCORER_RETRY_DELAY_SEC,
            min_review_length=settings.REVIEW_MIN_LENGTH,
        )
        self.orchestrator = EvaluationOrchestrator(
            self.evaluation_store,
            TextExtractor(),
            grader,
            notifier=notifier,
            storage=self.storage,
            rate_limiter=build_limiter(settings.RATE_LIMIT_EVALUATIONS, settings.RATE_LIMIT_EVALUATIONS_WINDOW_SEC),
            allowed_types=settings.RESUME_ALLOWED_TYPES,
            max_bytes=settings.RESUME_MAX_BYTES,
        )

        if self.use_stream:
            self.dispatcher = StreamDispatcher(self.redis, self.job_store, max_attempts=settings.WORKER_MAX_RETRIES)
        else:
            self.dispatcher = InlineDispatcher(self.orchestrator, self.job_store)
        self.monitor = QueueMonitor(self.job_store)

    async def startup(self) -> None:
        if self.use_mongo:
            await mongo.ensure_indexes()
        if self.use_stream:
            await ensure_group_exists(self.redis)
        await self.realtime.initialize()
        if self.relay is not None:
            self.relay.start()
        logger.info("Services started (role=%s, store=%s, dispatch=%s)",
                    self.role, self.settings.STORE_BACKEND, self.settings.EVALUATION_DISPATCH)

    async def shutdown(self) -> None:
        await self.dispatcher.shutdown()
        if self.relay is not None:
            await self.relay.stop()
        await self.realtime.shutdown()
        if self.redis is not None:
            await self.redis.aclose()
        if self.use_mongo:
            mongo.close_db()
        logger.info("Services stopped (role=%s)", self.role)


def build_services(settings: Optional[Settings] = None, role: str = "web") -> Services:
    return Services(settings or get_settings(), role=role)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None, **overrides) -> FastAPI:
    """Build the app; keyword overrides replace individual Settings fields (tests, scripts)."""
    if services is None:
        settings = settings or get_settings()
        if overrides:
            settings = settings.model_copy(update=overrides)
        services = build_services(settings)

    app = FastAPI(title="HireHub API")
    app.state.services = services
    register_error_handlers(app)

    app.include_router(evaluations_router, prefix="/api/v1")
    app.include_router(chat_router, prefix="/api/v1")
    app.include_router(queue_router, prefix="/api/v1")
    # sockets are mounted at the root: /ws and /ws/resume-status
    app.include_router(realtime_router)

    @app.on_event("startup")
    async def startup_event():
        configure_logging(services.settings.LOG_LEVEL)
        await services.startup()

    @app.on_event("shutdown")
    async def shutdown_event():
        await services.shutdown()

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "dispatch": services.dispatcher.mode,
            "realtime": services.realtime.stats(),
        }

    return app


app = create_app()
