import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .auth import require_user
from .content_policy import PolicyViolation
from .models import ChannelCreate, FriendRequestCreate, MessageCreate, UserCreate
from .presence import PresenceTracker
from .rate_limit import RateLimitExceeded
from .router import MessageRouter
from .session_registry import SessionRegistry
from .storage import MemoryStorage
from .typing_tracker import TypingTracker
from .ws_handler import websocket_chat

logger = logging.getLogger(__name__)

app = FastAPI(title="chathub")


# --- Service container ---

@dataclass
class ChatServices:
    """Everything the realtime core shares for the life of the process."""

    storage: MemoryStorage
    registry: SessionRegistry
    typing: TypingTracker
    presence: PresenceTracker
    router: MessageRouter


def build_services(storage: MemoryStorage | None = None) -> ChatServices:
    storage = storage or MemoryStorage()
    registry = SessionRegistry()
    typing = TypingTracker(registry)
    return ChatServices(
        storage=storage,
        registry=registry,
        typing=typing,
        presence=PresenceTracker(registry, storage),
        router=MessageRouter(registry, storage, typing),
    )


services = build_services()


# --- CORS Configuration ---

def _get_cors_origins() -> list[str]:
    """Get CORS origins from environment variable or use default."""
    cors_origins_str = os.environ.get("CHATHUB_CORS_ORIGINS", "http://localhost:8000")
    origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    return origins if origins else ["http://localhost:8000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

BASE_DIR = Path(__file__).resolve().parent.parent
UPLOADS_DIR = Path(os.environ.get("CHATHUB_UPLOADS_DIR", str(BASE_DIR / "uploads"))).resolve()
UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
MAX_UPLOAD_BYTES = int(os.environ.get("CHATHUB_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

app.mount("/uploads", StaticFiles(directory=str(UPLOADS_DIR)), name="uploads")


@app.on_event("startup")
async def startup_event():
    channels = await services.storage.get_channels()
    logger.info("chathub ready with %d channels, uploads in %s", len(channels), UPLOADS_DIR)


@app.on_event("shutdown")
async def shutdown_event():
    services.typing.shutdown()


# --- Helpers ---

_UPLOAD_KINDS = ("image", "video", "audio")
_SUFFIX_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


async def _save_upload(file: UploadFile, kind: str) -> tuple[str, str]:
    """Store an uploaded file under a random name; return (url, original name)."""
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    content_type = file.content_type or ""
    if not content_type.startswith(f"{kind}/"):
        raise HTTPException(status_code=400, detail=f"Upload must be of type {kind}/*")

    original = file.filename or kind
    suffix = Path(original).suffix
    if not _SUFFIX_RE.match(suffix):
        suffix = ""
    filename = uuid4().hex + suffix.lower()
    await asyncio.to_thread((UPLOADS_DIR / filename).write_bytes, data)
    logger.info("Stored %s upload %s (%d bytes)", kind, filename, len(data))
    return f"/uploads/{filename}", original


async def _get_user_or_404(user_id: str):
    user = await services.storage.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# --- API Routes ---

@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.post("/api/users")
async def api_create_user(req: UserCreate):
    try:
        user = await services.storage.create_user(req)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return user.to_wire()


@app.get("/api/users")
async def api_list_users():
    return [u.to_wire() for u in await services.storage.get_all_users()]


@app.get("/api/users/{user_id}")
async def api_get_user(user_id: str):
    return (await _get_user_or_404(user_id)).to_wire()


@app.post("/api/users/{user_id}/avatar")
async def api_update_avatar(
    user_id: str,
    file: UploadFile = File(...),
    caller: str = Depends(require_user),
):
    if caller != user_id:
        raise HTTPException(status_code=403, detail="Cannot change another user's avatar")
    await _get_user_or_404(user_id)
    url, _ = await _save_upload(file, "image")
    user = await services.storage.update_user_avatar(user_id, url)
    await services.router.announce_avatar(user)
    return user.to_wire()


@app.get("/api/channels")
async def api_list_channels():
    return [c.to_wire() for c in await services.storage.get_channels()]


@app.post("/api/channels")
async def api_create_channel(req: ChannelCreate):
    channel = await services.storage.create_channel(req)
    logger.info("Created channel #%s (%s)", channel.name, channel.id)
    await services.router.announce_channel(channel)
    return channel.to_wire()


@app.get("/api/channels/{channel_id}/messages")
async def api_channel_messages(channel_id: str, limit: int | None = Query(None, ge=1, le=1000)):
    if await services.storage.get_channel(channel_id) is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    messages = await services.storage.get_messages(channel_id, limit=limit)
    return [m.to_wire() for m in messages]


@app.post("/api/channels/{channel_id}/messages")
async def api_post_channel_message(
    channel_id: str,
    req: MessageCreate,
    caller: str = Depends(require_user),
):
    if await services.storage.get_channel(channel_id) is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    try:
        message = await services.router.submit_channel_message(
            caller, channel_id, req.content, req.media(), req.reply_to_id
        )
    except PolicyViolation:
        raise HTTPException(status_code=400, detail="Message rejected")
    except RateLimitExceeded as e:
        raise HTTPException(status_code=429, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return message.to_wire()


@app.get("/api/dm/{other_id}/messages")
async def api_dm_messages(other_id: str, caller: str = Depends(require_user)):
    messages = await services.storage.get_dm_messages(caller, other_id)
    return [m.to_wire() for m in messages]


@app.get("/api/friends")
async def api_list_friends(caller: str = Depends(require_user)):
    return [f.to_wire() for f in await services.storage.get_friends(caller)]


@app.get("/api/friends/requests")
async def api_friend_requests(caller: str = Depends(require_user)):
    return [r.to_wire() for r in await services.storage.get_friend_requests(caller)]


@app.post("/api/friends/request")
async def api_create_friend_request(req: FriendRequestCreate, caller: str = Depends(require_user)):
    try:
        request = await services.storage.create_friend_request(caller, req.to_username)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await services.router.notify_friend_request(request)
    return request.to_wire()


async def _pending_request_for(request_id: str, caller: str):
    request = await services.storage.get_friend_request(request_id)
    if request is None or request.status != "pending":
        raise HTTPException(status_code=404, detail="Request not found")
    if request.to_user_id != caller:
        raise HTTPException(status_code=403, detail="Not your request")
    return request


@app.post("/api/friends/accept/{request_id}")
async def api_accept_friend_request(request_id: str, caller: str = Depends(require_user)):
    request = await _pending_request_for(request_id, caller)
    result = await services.storage.accept_friend_request(request_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Request not found")
    new_friend, friend_for_requester = result
    await services.router.notify_friend_accepted(request.from_user_id, friend_for_requester)
    return new_friend.to_wire()


@app.post("/api/friends/decline/{request_id}")
async def api_decline_friend_request(request_id: str, caller: str = Depends(require_user)):
    await _pending_request_for(request_id, caller)
    if not await services.storage.decline_friend_request(request_id):
        raise HTTPException(status_code=404, detail="Request not found")
    return {"success": True}


@app.post("/api/upload/{kind}")
async def api_upload(kind: str, file: UploadFile = File(...)):
    if kind not in _UPLOAD_KINDS:
        raise HTTPException(status_code=404, detail="Unknown upload kind")
    url, name = await _save_upload(file, kind)
    return {"url": url, "name": name}


# --- WebSocket ---

@app.websocket("/ws")
async def ws_chat(websocket: WebSocket):
    await websocket_chat(
        websocket,
        storage=services.storage,
        router=services.router,
        presence=services.presence,
    )
