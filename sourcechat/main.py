import logging
from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sourcechat.config import Settings, get_settings
from sourcechat.database import init_db, set_db_path
from sourcechat.errors import GatewayError
from sourcechat.routers import chat, health, providers, suggestions
from sourcechat.services.auth import AccessCodeAuthenticator
from sourcechat.services.connection_registry import ConnectionRegistry
from sourcechat.services.message_store import SQLiteMessageStore
from sourcechat.services.providers.factory import ProviderFactory
from sourcechat.services.stream_session import SessionManager

logger = logging.getLogger(__name__)


def _build_retriever(settings: Settings):
    if not settings.openai_api_key.get_secret_value():
        logger.warning("No OpenAI key configured; chats will run without source retrieval")
        return None
    from sourcechat.services.retrieval import VectorRetriever
    from sourcechat.services.vectorstore import VectorStoreManager
    Path(settings.chroma_persist_dir).mkdir(parents=True, exist_ok=True)
    return VectorRetriever(settings, VectorStoreManager(settings))


def init_services(app: FastAPI, settings: Settings) -> None:
    """Create the process-wide services and hang them on ``app.state``."""
    app.state.registry = ConnectionRegistry()
    app.state.sessions = SessionManager()
    app.state.providers = ProviderFactory(settings)
    app.state.message_store = SQLiteMessageStore()
    app.state.authenticator = AccessCodeAuthenticator(settings.access_code)
    app.state.retriever = _build_retriever(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    # Ensure data directories exist
    db_path = Path(settings.database_url)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    # Initialize database
    set_db_path(settings.database_url)
    await init_db()
    init_services(app, settings)
    logger.info("SourceChat backend started")

    yield

    logger.info("SourceChat backend shutting down")
    await app.state.sessions.cancel_all()
    app.state.registry.close_all()


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)


def create_app() -> FastAPI:
    app = FastAPI(
        title="SourceChat API",
        description="Streaming chat over ingested sources with multiple LLM providers",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Routers
    app.include_router(health.router)
    app.include_router(providers.router)
    app.include_router(chat.router)
    app.include_router(suggestions.router)
    install_error_handlers(app)

    # CORS: read allowed origins from env, with sensible defaults
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    origins.extend(get_settings().cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()


@app.get("/")
async def read_root():
    return {
        "status": "ok",
        "message": "SourceChat backend is running",
        "docs": "/docs",
    }
