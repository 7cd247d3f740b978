from fastapi import Header, HTTPException

from app.config import settings
from app.database import async_session
from app.services.history_store import DEFAULT_DEVICE, HistoryStore
from app.services.vision_client import VisionClient

_history_store: HistoryStore | None = None


async def verify_api_key(x_api_key: str = Header(default="")) -> None:
    if not settings.api_key:
        return
    if x_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


async def get_device_id(x_device_id: str = Header(default="")) -> str:
    return x_device_id.strip() or DEFAULT_DEVICE


def get_vision_client() -> VisionClient:
    return VisionClient()


def get_history_store() -> HistoryStore:
    # one shared store so every append goes through the same lock
    global _history_store
    if _history_store is None:
        _history_store = HistoryStore(async_session)
    return _history_store
