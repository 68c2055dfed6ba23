"""FastAPI application for chappy."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import FastAPI, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import identity, roster
from ._version import __version__
from .auth_provider import extract_bearer_token, get_auth_method_name, verify_bearer_token
from .config import ServerSettings
from .errors import (
    ChappyError,
    Forbidden,
    MalformedInput,
    NotFound,
    StoreUnavailable,
    UserNotFound,
    WriteConflict,
)
from .keys import ThreadAddress
from .messages import MessageStore, clamp_limit, send_public
from .metrics import metrics
from .models import Message, Principal
from .store import get_store, reset_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store on startup and release it on shutdown."""
    store = get_store()
    logger.info(f"Using {type(store).__name__}, auth method: {get_auth_method_name()}")
    yield
    await store.close()
    reset_store()


app = FastAPI(
    title="chappy",
    description="Multi-room chat with channels and direct messages",
    version=__version__,
    lifespan=lifespan,
)


# --- Request Timing Middleware ---


@app.middleware("http")
async def add_timing_middleware(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000

    # /api/messages/public -> messages/public, /api/users/123 -> users
    parts = [p for p in request.url.path.split("/") if p]
    if parts and parts[0] == "api":
        parts = parts[1:]
    if len(parts) >= 2 and parts[0] in ("messages", "channels", "dms") and parts[1] in ("public", "all"):
        endpoint = f"{request.method} {parts[0]}/{parts[1]}"
    elif parts:
        endpoint = f"{request.method} {parts[0]}"
    else:
        endpoint = f"{request.method} other"

    metrics.record_request(endpoint, duration_ms)
    response.headers["X-Response-Time-Ms"] = f"{duration_ms:.1f}"
    return response


# --- Error mapping ---

_STATUS_BY_ERROR: list[tuple[type[ChappyError], int]] = [
    (MalformedInput, 400),
    (Forbidden, 403),
    (NotFound, 404),
    (WriteConflict, 409),
    (StoreUnavailable, 503),
]


@app.exception_handler(ChappyError)
async def chappy_error_handler(request: Request, exc: ChappyError):
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    body: dict[str, Any] = {"success": False, "message": str(exc)}
    if exc.retryable:
        body["retryable"] = True
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# --- Request/Response Models ---


class SendMessageRequest(BaseModel):
    kind: str | None = None
    text: str | None = None
    channel: str | None = None
    dmId: str | None = None


class MessageInfo(BaseModel):
    id: str
    kind: str
    channel: str | None = None
    dmId: str | None = None
    author: str
    text: str
    createdAt: str
    sender: str
    time: str | None = None


class MessageListResponse(BaseModel):
    success: bool = True
    messages: list[MessageInfo]


class MessageResponse(BaseModel):
    success: bool = True
    message: MessageInfo


class ChannelInfo(BaseModel):
    name: str
    isLocked: bool


class ChannelListResponse(BaseModel):
    success: bool = True
    channels: list[ChannelInfo]


class DmInfo(BaseModel):
    dmId: str
    username: str
    lastMessageAt: str | None = None


class DmListResponse(BaseModel):
    success: bool = True
    dms: list[DmInfo]


class DmThreadInfo(BaseModel):
    id: str
    members: list[str]
    lastMessageAt: str | None = None


class DmThreadListResponse(BaseModel):
    success: bool = True
    dms: list[DmThreadInfo]


class UserInfo(BaseModel):
    userId: str
    username: str
    accessLevel: str


class UserListResponse(BaseModel):
    success: bool = True
    users: list[UserInfo]


class MeResponse(BaseModel):
    success: bool = True
    username: str
    accessLevel: str
    userId: str | None


def _message_info(message: Message) -> MessageInfo:
    return MessageInfo(**message.to_dict())


def _settings() -> ServerSettings:
    return ServerSettings.load()


# --- Auth Helpers ---


async def require_principal(authorization: str | None) -> Principal:
    """Verify the bearer token and return the caller. 401 on any failure."""
    token = extract_bearer_token(authorization)
    if not token:
        raise HTTPException(401, "missing or invalid token")

    # Verifiers may do blocking I/O (HTTP call, file read)
    result = await run_in_threadpool(verify_bearer_token, token)
    principal = result.to_principal()
    if principal is None:
        raise HTTPException(401, result.error or "missing or invalid token")
    return principal


async def optional_principal(authorization: str | None) -> Principal | None:
    """Like require_principal, but an absent header means anonymous."""
    if not authorization:
        return None
    return await require_principal(authorization)


def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise HTTPException(403, "admin access required")


def require_dm_member(principal: Principal, address: ThreadAddress) -> None:
    """Only participants (or admins) may read or write a DM thread."""
    members = [m.lower() for m in address.members()]
    if principal.username.lower() not in members and not principal.is_admin:
        raise HTTPException(403, "not a member of this DM")


def _address_from(kind: str, channel: str | None, dm_id: str | None) -> ThreadAddress:
    kind = kind.lower()
    if not kind:
        kind = "channel" if channel else "dm" if dm_id else ""
    if kind == "channel":
        return ThreadAddress.channel(channel or "")
    if kind == "dm":
        return ThreadAddress.dm(dm_id or "")
    raise MalformedInput("kind must be 'channel' or 'dm'")


# --- Health ---


@app.get("/health")
@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/metrics")
async def get_metrics(authorization: Annotated[str | None, Header()] = None):
    """Application metrics. Requires an admin principal."""
    require_admin(await require_principal(authorization))
    return metrics.to_dict()


# --- Channels ---


@app.get("/api/channels", response_model=ChannelListResponse)
async def list_public_channels():
    """Unlocked channels; anyone may call this."""
    channels = await roster.list_channels(get_store(), include_locked=False)
    return ChannelListResponse(channels=[ChannelInfo(**ch.to_dict()) for ch in channels])


@app.get("/api/channels/all", response_model=ChannelListResponse)
async def list_all_channels(authorization: Annotated[str | None, Header()] = None):
    """All channels, locked ones included. Requires login."""
    await require_principal(authorization)
    channels = await roster.list_channels(get_store(), include_locked=True)
    return ChannelListResponse(channels=[ChannelInfo(**ch.to_dict()) for ch in channels])


# --- Messages ---


@app.get("/api/messages", response_model=MessageListResponse)
async def list_messages(
    kind: str = "",
    channel: str | None = None,
    dmId: str | None = None,
    limit: Annotated[str | None, Query()] = None,
    authorization: Annotated[str | None, Header()] = None,
):
    """Messages of a channel or DM thread, oldest first.

    Locked channels and DM threads require a bearer token; DM threads also
    require membership.
    """
    address = _address_from(kind, channel, dmId)
    principal = await optional_principal(authorization)
    store = get_store()

    if address.kind == "dm":
        if principal is None:
            raise HTTPException(401, "missing or invalid token")
        require_dm_member(principal, address)
    elif principal is None and await roster.is_channel_locked(store, address.name):
        raise HTTPException(401, "channel is locked")

    messages = await MessageStore(store).list(address, clamp_limit(limit))
    return MessageListResponse(messages=[_message_info(m) for m in messages])


@app.post("/api/messages/public", response_model=MessageResponse, status_code=201)
async def send_guest_message(request: SendMessageRequest | None = None):
    """Guest post without login; only the public channel accepts it."""
    request = request or SendMessageRequest()
    settings = _settings()
    if (request.kind or "").lower() != "channel":
        raise MalformedInput(f"only {settings.public_channel} channel is public")

    saved = await send_public(
        MessageStore(get_store()),
        request.channel or "",
        request.text or "",
        public_channel=settings.public_channel,
        guest_name=settings.guest_name,
    )
    return MessageResponse(message=_message_info(saved))


@app.post("/api/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    request: SendMessageRequest | None = None,
    authorization: Annotated[str | None, Header()] = None,
):
    """Send a message to a channel or DM thread as the logged-in user."""
    principal = await require_principal(authorization)
    request = request or SendMessageRequest()

    if not request.text or not request.text.strip():
        raise MalformedInput("text is required")

    address = _address_from(request.kind or "", request.channel, request.dmId)
    if address.kind == "dm":
        require_dm_member(principal, address)

    saved = await MessageStore(get_store()).send(address, principal.username, request.text)
    return MessageResponse(message=_message_info(saved))


# --- DMs ---


@app.get("/api/dms", response_model=DmListResponse)
async def list_my_dms(authorization: Annotated[str | None, Header()] = None):
    """DM threads of the logged-in user, newest first."""
    principal = await require_principal(authorization)
    views = await roster.list_dm_threads_for_user(get_store(), principal.username)
    return DmListResponse(dms=[DmInfo(**view.to_dict()) for view in views])


@app.get("/api/dms/all", response_model=DmThreadListResponse)
async def list_all_dms(authorization: Annotated[str | None, Header()] = None):
    """Every DM thread. Admin only."""
    require_admin(await require_principal(authorization))
    threads = await roster.list_all_dm_threads(get_store())
    return DmThreadListResponse(dms=[DmThreadInfo(**t.to_dict()) for t in threads])


# --- Users ---


@app.get("/api/users", response_model=UserListResponse)
async def list_users(authorization: Annotated[str | None, Header()] = None):
    """All users (no credentials). Requires login."""
    await require_principal(authorization)
    records = await identity.list_users(get_store())
    return UserListResponse(
        users=[
            UserInfo(
                userId=identity.resolve_user_id(r),
                username=r.username,
                accessLevel=r.access_level,
            )
            for r in records
        ]
    )


@app.delete("/api/users/{user_id}")
async def delete_user(user_id: str, authorization: Annotated[str | None, Header()] = None):
    """Delete a user. Users may delete themselves; admins may delete anyone."""
    principal = await require_principal(authorization)
    await identity.delete_user(get_store(), principal, user_id)
    return {"success": True}


@app.get("/api/me", response_model=MeResponse)
async def me(authorization: Annotated[str | None, Header()] = None):
    """The logged-in user; userId is null when no user row matches."""
    principal = await require_principal(authorization)
    try:
        user_id: str | None = await identity.resolve(get_store(), principal.username)
    except UserNotFound:
        user_id = None
    return MeResponse(
        username=principal.username,
        accessLevel=principal.access_level,
        userId=user_id,
    )
