import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.router import api_router
from app.core.config import get_settings
from app.core.errors import MeetingAssistError
from app.services.meeting_data_store import create_meeting_data_store


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=_lifespan,
    )
    app.state.sync_coordinator = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    app.add_exception_handler(MeetingAssistError, _handle_meeting_assist_error)

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    await _initialize_storage()
    yield
    _release_sync_coordinator(app)


async def _handle_meeting_assist_error(request: Request, exc: MeetingAssistError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("Request failed path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


async def _initialize_storage() -> None:
    logger.info("Initializing meeting storage indexes")
    await create_meeting_data_store(get_settings()).ensure_indexes()


def _release_sync_coordinator(app: FastAPI) -> None:
    coordinator = app.state.sync_coordinator
    if coordinator is None:
        return
    coordinator.cleanup()
    app.state.sync_coordinator = None


app = create_application()
