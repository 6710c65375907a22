from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from sourcechat.config import Settings, get_settings
from sourcechat.services.auth import Authenticator, Identity
from sourcechat.services.connection_registry import ConnectionRegistry
from sourcechat.services.message_store import MessageStore
from sourcechat.services.providers.factory import ProviderFactory
from sourcechat.services.retrieval import SourceRetriever
from sourcechat.services.stream_session import SessionManager

# Process-wide services are created in the app lifespan and live on app.state.


def get_connection_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_provider_factory(request: Request) -> ProviderFactory:
    return request.app.state.providers


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_retriever(request: Request) -> Optional[SourceRetriever]:
    return getattr(request.app.state, "retriever", None)


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


def get_app_settings() -> Settings:
    return get_settings()


def get_identity(
    authorization: Optional[str] = Header(default=None),
    authenticator: Authenticator = Depends(get_authenticator),
) -> Identity:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    identity = authenticator.verify(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or missing access code")
    return identity
