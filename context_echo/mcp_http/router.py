"""ASGI router mapping each MCP request onto its session."""

import json
import logging
import uuid

from starlette.datastructures import Headers, QueryParams
from starlette.requests import ClientDisconnect
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from ..core.constants import FALLBACK_SESSION_ID, SESSION_ID_HEADER, SESSION_ID_QUERY_PARAM
from ..core.exceptions import InvalidArgumentError, KGError, SessionEvictedError
from .session_manager import SessionRegistry

logger = logging.getLogger(__name__)

# JSON-RPC error codes per failure category
ERROR_CODES = {
    "InvalidArgument": -32602,
    "ValidationError": -32602,
    "UnknownOperation": -32601,
}
INTERNAL_ERROR_CODE = -32603

# HTTP status per failure category
STATUS_CODES = {
    "InvalidArgument": 400,
    "ValidationError": 400,
    "UnknownOperation": 404,
    "SessionHandshakeFailure": 503,
    "SessionEvicted": 503,
}

# Prefix of the private request ids used on the fallback session
PRIVATE_ID_PREFIX = "ctx-echo-"


def session_id_for(scope: Scope) -> str:
    """Header beats query parameter; callers sending neither share the fallback session."""
    header_id = Headers(scope=scope).get(SESSION_ID_HEADER)
    if header_id:
        return header_id

    query_id = QueryParams(scope.get("query_string", b"")).get(SESSION_ID_QUERY_PARAM)
    if query_id:
        return query_id

    return FALLBACK_SESSION_ID


def replace_header(headers, name: bytes, value: bytes | None) -> list:
    """Header list without `name`, plus `name: value` unless value is None."""
    replaced = [(k, v) for k, v in headers if k.lower() != name]
    if value is not None:
        replaced.append((name, value))
    return replaced


def with_session_header(scope: Scope, session_id: str) -> Scope:
    """Copy of scope whose mcp-session-id header is exactly `session_id`."""
    try:
        value = session_id.encode("latin-1")
    except UnicodeEncodeError:
        raise InvalidArgumentError(f"Session id {session_id!r} is not a valid header value") from None
    headers = replace_header(scope.get("headers", []), SESSION_ID_HEADER.encode("latin-1"), value)
    return {**scope, "headers": headers}


def error_payload(category: str, message: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": None,
        "error": {
            "code": ERROR_CODES.get(category, INTERNAL_ERROR_CODE),
            "message": f"{category}: {message}",
            "data": {"category": category},
        },
    }


class ResponseGuard:
    """
    Wraps an ASGI send so a request gets at most one response.

    Everything after a complete response is dropped, as is a second
    response start together with anything sent after it. Once the client
    has gone away, further messages are discarded without raising.
    """

    def __init__(self, send: Send, session_id: str):
        self._send = send
        self.session_id = session_id
        self.started = False
        self.finished = False
        self.disconnected = False

    async def __call__(self, message: Message) -> None:
        if self.disconnected or self.finished:
            return

        if message["type"] == "http.response.start":
            if self.started:
                logger.error(f"Dropped duplicate response start for session {self.session_id}")
                self.finished = True
                return
            self.started = True
        elif message["type"] == "http.response.body" and not message.get("more_body", False):
            self.finished = True

        try:
            await self._send(message)
        except OSError as e:
            self.disconnected = True
            logger.debug(f"Client went away on session {self.session_id}: {e}")


async def read_body(receive: Receive) -> bytes:
    chunks = []
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            raise ClientDisconnect()
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            return b"".join(chunks)


def replay(body: bytes, receive: Receive) -> Receive:
    """Receive callable that yields `body` once, then defers to `receive`."""
    delivered = False

    async def replayed() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replayed


class RequestIdIsolation:
    """
    Gives a JSON-RPC request on the shared fallback session a private id.

    The transport pairs responses with requests by id, and unrelated
    callers mostly count from 1. The caller's id is swapped for a unique
    token on the way in and put back on every response message on the
    way out.
    """

    def __init__(self, send: Send):
        self._send = send
        self._tokens: dict[bytes, bytes] = {}
        self._pending_start: Message | None = None

    async def rewrite(self, scope: Scope, receive: Receive) -> tuple[Scope, Receive]:
        if scope.get("method") != "POST":
            return scope, receive

        body = await read_body(receive)
        try:
            payload = json.loads(body)
        except ValueError:
            # Left for the transport to reject
            return scope, replay(body, receive)

        if isinstance(payload, dict) and "method" in payload and payload.get("id") is not None:
            token = f"{PRIVATE_ID_PREFIX}{uuid.uuid4().hex}"
            self._tokens[json.dumps(token).encode()] = json.dumps(payload["id"]).encode()
            payload["id"] = token
            body = json.dumps(payload).encode()
            headers = replace_header(scope.get("headers", []), b"content-length", str(len(body)).encode())
            scope = {**scope, "headers": headers}

        return scope, replay(body, receive)

    def restore(self, body: bytes) -> bytes:
        for token, original in self._tokens.items():
            body = body.replace(token, original)
        return body

    async def send(self, message: Message) -> None:
        if not self._tokens:
            await self._send(message)
            return

        # Restoring ids changes the body length, so the start waits for the first body
        if message["type"] == "http.response.start":
            await self.flush()
            self._pending_start = message
            return

        if message["type"] == "http.response.body":
            body = self.restore(message.get("body", b""))
            more_body = message.get("more_body", False)
            await self.flush(None if more_body else len(body))
            message = {**message, "body": body}

        await self._send(message)

    async def flush(self, content_length: int | None = None) -> None:
        """Send a held response start, with a content-length only when the body is known."""
        if self._pending_start is None:
            return
        start, self._pending_start = self._pending_start, None
        length = None if content_length is None else str(content_length).encode()
        await self._send({**start, "headers": replace_header(start.get("headers", []), b"content-length", length)})


class RequestRouter:
    """ASGI app: resolve the request's session and hand the request to its transport."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = session_id_for(scope)
        guard = ResponseGuard(send, session_id)

        try:
            await self._forward(session_id, scope, receive, guard)

        except ClientDisconnect:
            logger.debug(f"Client disconnected before session {session_id} answered")
        except KGError as e:
            logger.warning(f"Request on session {session_id} failed: {e}")
            await self._fail(guard, scope, receive, e.category, e.message, STATUS_CODES.get(e.category, 500))
        except Exception as e:
            logger.error(f"Unexpected error on session {session_id}: {e}", exc_info=True)
            await self._fail(guard, scope, receive, "Internal", "Internal server error", 500)

    async def _forward(self, session_id: str, scope: Scope, receive: Receive, guard: ResponseGuard):
        """Resolve and forward; a session evicted before it answered is re-resolved once."""
        isolation = None
        send: Send = guard
        if session_id == FALLBACK_SESSION_ID:
            isolation = RequestIdIsolation(guard)
            scope, receive = await isolation.rewrite(scope, receive)
            send = isolation.send
        else:
            scope = with_session_header(scope, session_id)

        session = await self.registry.resolve(session_id)
        try:
            await session.handle_request(scope, receive, send)
        except SessionEvictedError:
            if guard.started:
                raise
            logger.info(f"Session {session_id} was evicted mid-request, re-resolving")
            session = await self.registry.resolve(session_id)
            await session.handle_request(scope, receive, send)

        if isolation is not None:
            await isolation.flush()

    @staticmethod
    async def _fail(guard: ResponseGuard, scope: Scope, receive: Receive, category: str, message: str, status: int):
        if guard.started or guard.disconnected:
            return
        response = JSONResponse(error_payload(category, message), status_code=status)
        await response(scope, receive, guard)
