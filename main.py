import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.sessions import SessionMiddleware

from shlink_ui.api import admin, auth, mypage, pages, short_urls, statistics, two_factor
from shlink_ui.config import settings
from shlink_ui.database.connection import Base, SessionLocal, engine
from shlink_ui.dependencies import get_cache, get_queue, rate_limit
from shlink_ui.jobs.worker import JobWorker
from shlink_ui.logging_setup import configure_logging
from shlink_ui.services.app_config import AppConfig
from shlink_ui.services.auth_service import AuthError
from shlink_ui.services.runtime_config import reconfigure
from shlink_ui.services.settings_store import SettingsStore
from shlink_ui.services.shlink_client import ShlinkError

# Import models to ensure they're registered with Base
from shlink_ui.models import BackgroundJob, ShortUrl, SystemSetting, User, WebauthnCredential  # noqa: F401

logger = logging.getLogger("shlink_ui.main")


async def _bootstrap():
    db = SessionLocal()
    try:
        store = SettingsStore(db)
        if settings.seed_default_settings:
            store.initialize_defaults()
        await reconfigure(AppConfig(store, cache=get_cache()))
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    await _bootstrap()

    worker = None
    worker_task = None
    if settings.embedded_worker:
        worker = JobWorker(get_queue(), block_time=0)
        worker_task = asyncio.create_task(worker.start(install_signal_handlers=False))
        logger.info("Embedded job worker started")

    yield

    if worker is not None:
        worker.stop()
        await worker_task


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="A web front-end and admin panel for the Shlink URL shortener",
    debug=settings.debug,
    lifespan=lifespan,
    dependencies=[Depends(rate_limit("requests"))],
)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    session_cookie=settings.session_cookie,
    max_age=settings.session_max_age,
    https_only=settings.environment == "production",
)


@app.middleware("http")
async def coffee_to_teapot(request: Request, call_next):
    """Development-only joke; never shadows real paths such as short codes."""
    if settings.environment == "development" and "coffee" in request.url.path.lower():
        return RedirectResponse("/teapot", status_code=302)
    return await call_next(request)


@app.exception_handler(ShlinkError)
async def shlink_error_handler(request: Request, exc: ShlinkError):
    logger.error("Shlink error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=502, content={"success": False, "message": exc.message})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500, content={"success": False, "message": "An unexpected error occurred"}
    )


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


######## Include routers
app.include_router(auth.router)
app.include_router(auth.account_router)
app.include_router(two_factor.router)
app.include_router(short_urls.router)
app.include_router(mypage.router)
app.include_router(statistics.router)
app.include_router(admin.router)
app.include_router(pages.router)
