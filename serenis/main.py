"""
ASGI entry point for the ritual service.

    uvicorn serenis.main:app --reload

The lifespan builds one FlowController over the configured store and
parks it on ``app.state``; routes reach it through
``serenis.api.dependencies``.
"""

from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from serenis import __version__
from serenis.core.config import settings
from serenis.core.logging import configure_logging, get_logger, bind_context, clear_context
from serenis.llm.client import get_llm_client
from serenis.persistence.database import init_database
from serenis.persistence.kv_store import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore
from serenis.api.routes import health, history, ritual, session
from serenis.api.exception_handlers import setup_exception_handlers
from serenis.services.flow_controller import FlowController
from serenis.services.question_service import QuestionService
from serenis.services.summary_service import SummaryService
from serenis.services.sync_service import get_sync_service

configure_logging()
log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

ROUTERS = (
    health.router,
    session.router,
    ritual.router,
    ritual.summary_router,
    history.router,
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every log line of a request with one id, echoed back in a header.

    A caller-supplied X-Request-ID is reused so traces line up with the
    client's own logs.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        bind_context(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


async def open_store() -> KeyValueStore:
    if settings.storage_backend == "memory":
        log.warning("memory_storage_in_use", detail="Sessions will not survive restarts")
        return MemoryKeyValueStore()
    return SqliteKeyValueStore(await init_database())


async def build_controller(store: KeyValueStore) -> FlowController:
    """Wire the AI, summary and sync services around the persisted session."""
    llm_client = get_llm_client()
    return await FlowController.create(
        store,
        question_service=QuestionService(llm_client),
        summary_service=SummaryService(llm_client),
        sync_service=get_sync_service(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(
        "application_starting",
        storage_backend=settings.storage_backend,
        ai_configured=settings.llm_configured,
        sync_configured=settings.sync_configured,
    )
    app.state.store = await open_store()
    controller = await build_controller(app.state.store)
    app.state.flow_controller = controller
    log.info("application_started", session_id=controller.session.id, progress=controller.progress_percent)
    try:
        yield
    finally:
        # Session-mode records must not outlive the process
        await controller.shutdown()
        log.info("application_stopped")


def create_app() -> FastAPI:
    application = FastAPI(
        title="Serenis Ritual",
        description="ACT-based Socratic ritual: session flow, history and AI questions",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    if settings.debug:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )
    application.add_middleware(RequestIDMiddleware)
    setup_exception_handlers(application)
    for router in ROUTERS:
        application.include_router(router)

    @application.get("/", include_in_schema=False)
    async def index():
        return {"name": application.title, "version": __version__, "docs": "/docs"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("serenis.main:app", host=settings.host, port=settings.port, reload=settings.debug)
