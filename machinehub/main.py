import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine, SessionLocal
from .errors import MachineHubError, PermissionDenied
from .logging import setup_logging, RequestIdMiddleware
from .auth.router import router as auth_router
from .routes.machines import router as machines_router, scan_router
from .routes.users import router as users_router
from .routes.sync import router as sync_router
from .auth.security import get_password_hash
from .models.models import User
from .schemas.auth import SessionKind
from .services.sync import SyncManager
from .storage.local_provider import LocalCacheProvider
from .storage.remote_provider import SqlRemoteStore
from .store import EntityStore


logger = structlog.get_logger(__name__)


def build_store():
    """Wire the local cache, the SQL remote store and the sync worker into a store."""
    sync = SyncManager(LocalCacheProvider(), SqlRemoteStore(SessionLocal))
    return EntityStore.bootstrap(sync)


def seed_admin() -> None:
    if not settings.admin_email or not settings.admin_password:
        return
    db = SessionLocal()
    try:
        email = settings.admin_email.lower()
        if db.query(User).filter(User.email == email).first() is None:
            db.add(User(email=email, name="Administrator", role="admin", password_hash=get_password_hash(settings.admin_password)))
            db.commit()
            logger.info("admin_seeded", email=email)
    finally:
        db.close()


def create_app(store=None) -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)
    app.state.store = store

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(MachineHubError)
    async def _domain_error(request: Request, exc: MachineHubError):
        status_code = exc.status_code
        if isinstance(exc, PermissionDenied) and exc.detail.get("session_kind") == SessionKind.anonymous.value:
            status_code = 401
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": type(exc).__name__, "context": exc.detail},
        )

    # Routers
    app.include_router(auth_router)
    app.include_router(machines_router)
    app.include_router(scan_router)
    app.include_router(users_router)
    app.include_router(sync_router)

    # Metrics
    # Registry per app so several apps can live in one process
    Instrumentator(registry=CollectorRegistry()).instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        logger.info("startup")
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        seed_admin()
        if app.state.store is None:
            app.state.store = build_store()
        if app.state.store.sync.background:
            app.state.store.sync.start()
        logger.info("startup_complete", machines=len(app.state.store.machines))

    @app.on_event("shutdown")
    def _shutdown():
        current = app.state.store
        if current is not None:
            current.sync.flush(timeout=5.0)
            current.sync.stop()

    return app


app = create_app()
