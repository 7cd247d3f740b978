"""Capped, device-scoped history of past analyses.

Each device owns one keyed blob holding its results newest-first. Appends
rewrite the whole blob; the oldest entries fall off once the cap is hit.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.history import HistoryBlob
from app.schemas.analysis import AnalysisResult
from app.services.prompts import resolve_lab

logger = logging.getLogger(__name__)

HISTORY_VERSION = 1
DEFAULT_DEVICE = "default"


def _migrate_legacy_entry(entry: dict) -> dict:
    """Version 0 entries used ``type`` / ``imageUrls`` and lab aliases."""
    migrated = dict(entry)
    if "type" in migrated and "category" not in migrated:
        migrated["category"] = migrated.pop("type")
    if "imageUrls" in migrated and "images" not in migrated:
        migrated["images"] = migrated.pop("imageUrls")
    migrated["category"] = resolve_lab(migrated["category"]).value
    return migrated


def decode_payload(raw: str, version: int) -> list[AnalysisResult]:
    """Decode a stored blob, migrating old versions and dropping broken entries."""
    try:
        entries = json.loads(raw) if raw else []
    except json.JSONDecodeError:
        logger.warning("History blob is not valid JSON, starting empty")
        return []
    if not isinstance(entries, list):
        logger.warning("History blob is not a list, starting empty")
        return []

    results: list[AnalysisResult] = []
    for entry in entries:
        try:
            if version < 1:
                entry = _migrate_legacy_entry(entry)
            results.append(AnalysisResult.model_validate(entry))
        except (ValidationError, ValueError, KeyError, TypeError) as e:
            logger.warning("Dropping unreadable history entry: %s", e)
    return results


def encode_payload(results: list[AnalysisResult]) -> str:
    return json.dumps([r.model_dump(mode="json") for r in results], ensure_ascii=False)


class HistoryStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], capacity: int | None = None):
        self.session_factory = session_factory
        self.capacity = capacity or settings.history_capacity
        self._lock = asyncio.Lock()

    async def load(self, device_id: str = DEFAULT_DEVICE) -> list[AnalysisResult]:
        async with self.session_factory() as db_session:
            blob = await db_session.get(HistoryBlob, device_id)
            if blob is None:
                return []
            return decode_payload(blob.payload, blob.version)

    async def append(self, result: AnalysisResult, device_id: str = DEFAULT_DEVICE) -> list[AnalysisResult]:
        """Prepend ``result`` and truncate to capacity. Returns the new history."""
        async with self._lock:
            async with self.session_factory() as db_session:
                blob = await db_session.get(HistoryBlob, device_id)
                existing = decode_payload(blob.payload, blob.version) if blob else []

                history = [result, *existing]
                if len(history) > self.capacity:
                    logger.info(
                        "History for %s over capacity, evicting %d oldest entries",
                        device_id, len(history) - self.capacity,
                    )
                    history = history[: self.capacity]

                now = datetime.now(timezone.utc).isoformat()
                if blob is None:
                    blob = HistoryBlob(key=device_id)
                    db_session.add(blob)
                blob.version = HISTORY_VERSION
                blob.payload = encode_payload(history)
                blob.updated_at = now
                await db_session.commit()

        return history

    async def clear(self, device_id: str = DEFAULT_DEVICE) -> None:
        async with self._lock:
            async with self.session_factory() as db_session:
                blob = await db_session.get(HistoryBlob, device_id)
                if blob is not None:
                    await db_session.delete(blob)
                    await db_session.commit()
        logger.info("History cleared for %s", device_id)
