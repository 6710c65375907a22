import os
from typing import Iterator, Optional

import httpx
from httpx_sse import connect_sse

from sourcechat_client.errors import StreamRequestError
from sourcechat_client.events import StreamEvent, parse_event
from sourcechat_client.stream_reducer import ChatState, consume_stream

BACKEND_URL = os.environ.get("BACKEND_URL", "http://127.0.0.1:8000")


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text


class ChatStreamClient:
    def __init__(
        self,
        base_url: str = BACKEND_URL,
        access_code: Optional[str] = None,
        timeout: float = 300.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_code = access_code
        self.timeout = timeout
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.Client:
        headers = {}
        if self.access_code:
            headers["Authorization"] = f"Bearer {self.access_code}"
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout or self.timeout),
            transport=self._transport,
        )

    # --- Streaming ---

    def _iter_events(self, method: str, path: str, **kwargs) -> Iterator[StreamEvent]:
        with self._client() as client:
            with connect_sse(client, method, path, **kwargs) as event_source:
                response = event_source.response
                if response.status_code >= 400:
                    response.read()
                    raise StreamRequestError(response.status_code, _error_detail(response))
                for sse in event_source.iter_sse():
                    if not sse.data:
                        continue
                    event = parse_event(sse.data)
                    if event is not None:
                        yield event

    def stream_message(
        self,
        chat_id: str,
        content: str,
        source_ids: Optional[list[str]] = None,
        provider: Optional[str] = None,
    ) -> Iterator[StreamEvent]:
        """Send a message and yield the turn's events until the server closes the stream."""
        payload = {"content": content, "sourceIds": source_ids or []}
        if provider:
            payload["provider"] = provider
        yield from self._iter_events("POST", f"/chats/{chat_id}/stream", json=payload)

    def listen(self, chat_id: str) -> Iterator[StreamEvent]:
        """Follow every event broadcast to a conversation, e.g. from another tab."""
        yield from self._iter_events("GET", f"/chats/{chat_id}/events")

    def send(
        self,
        chat_id: str,
        content: str,
        state: Optional[ChatState] = None,
        source_ids: Optional[list[str]] = None,
        provider: Optional[str] = None,
    ) -> ChatState:
        return consume_stream(self.stream_message(chat_id, content, source_ids, provider), state)

    # --- REST calls ---

    def stop(self, chat_id: str) -> bool:
        with self._client(timeout=10.0) as client:
            r = client.post(f"/chats/{chat_id}/stop")
            r.raise_for_status()
            return r.json()["stopped"]

    def get_suggestions(self, chat_id: str, provider: Optional[str] = None) -> list[str]:
        """Follow-up questions for a chat; empty list when the server can't be reached."""
        params = {"provider": provider} if provider else {}
        try:
            with self._client(timeout=10.0) as client:
                r = client.get(f"/chats/{chat_id}/suggestions", params=params)
                r.raise_for_status()
                return r.json().get("suggestions", [])
        except httpx.HTTPError:
            return []

    def list_providers(self) -> dict:
        with self._client(timeout=10.0) as client:
            r = client.get("/providers")
            r.raise_for_status()
            return r.json()

    def health_check(self) -> dict:
        with self._client(timeout=5.0) as client:
            r = client.get("/health")
            r.raise_for_status()
            return r.json()
