import asyncio
import json
import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import StreamingResponse

from app.dependencies import get_device_id, get_history_store, get_vision_client
from app.schemas.analysis import AnalysisMode, AnalysisRequest, AnalysisResult
from app.services.history_store import HistoryStore
from app.services.image_intake import encode_upload, enforce_max_count
from app.services.orchestrator import (
    BatchAnalysisOrchestrator,
    CancellationToken,
    Cancelled,
    Failed,
    Running,
    Succeeded,
    Summarizing,
    VisionService,
)
from app.utils.exceptions import AnalysisError, describe_error
from app.utils.response import success_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyze", tags=["analyze"])

_TERMINAL_PHASES = (Succeeded, Failed, Cancelled)


async def _analyze_and_record(
    payload: AnalysisRequest,
    vision: VisionService,
    store: HistoryStore,
    device_id: str,
    **orchestrator_kwargs,
) -> AnalysisResult:
    orchestrator = BatchAnalysisOrchestrator(vision, **orchestrator_kwargs)
    result = await orchestrator.run(payload)
    await store.append(result, device_id)
    return result


def phase_event(phase) -> dict:
    event = {"event": "phase", "phase": phase.name}
    if isinstance(phase, Running):
        event.update(step=phase.step.value, index=phase.index, total=phase.total)
    elif isinstance(phase, Summarizing):
        event["total"] = phase.total
    return event


def _ndjson(event: dict) -> bytes:
    return (json.dumps(event, ensure_ascii=False) + "\n").encode("utf-8")


@router.post("", status_code=201)
async def analyze(
    payload: AnalysisRequest,
    device_id: str = Depends(get_device_id),
    vision: VisionService = Depends(get_vision_client),
    store: HistoryStore = Depends(get_history_store),
):
    result = await _analyze_and_record(payload, vision, store, device_id)
    return success_response(data=result.model_dump(mode="json"))


@router.post("/upload", status_code=201)
async def analyze_upload(
    category: str = Form(...),
    mode: AnalysisMode = Form(AnalysisMode.COMBINED),
    files: list[UploadFile] = File(...),
    device_id: str = Depends(get_device_id),
    vision: VisionService = Depends(get_vision_client),
    store: HistoryStore = Depends(get_history_store),
):
    enforce_max_count(files)

    images = []
    for upload in files:
        raw = await upload.read()
        images.append(encode_upload(raw, upload.content_type, upload.filename))

    payload = AnalysisRequest(category=category, images=[i.data_uri for i in images], mode=mode)
    result = await _analyze_and_record(payload, vision, store, device_id)
    return success_response(data=result.model_dump(mode="json"))


@router.post("/stream")
async def analyze_stream(
    payload: AnalysisRequest,
    device_id: str = Depends(get_device_id),
    vision: VisionService = Depends(get_vision_client),
    store: HistoryStore = Depends(get_history_store),
):
    """Run an analysis while streaming phase changes as NDJSON.

    The last line is either a ``result`` or an ``error`` event. Dropping the
    connection cancels the run before its next model call.
    """
    queue: asyncio.Queue = asyncio.Queue()
    token = CancellationToken()

    async def _run() -> AnalysisResult:
        try:
            return await _analyze_and_record(
                payload, vision, store, device_id, on_phase=queue.put_nowait, token=token,
            )
        finally:
            queue.put_nowait(None)

    async def _events():
        task = asyncio.create_task(_run())
        try:
            while (phase := await queue.get()) is not None:
                if not isinstance(phase, _TERMINAL_PHASES):
                    yield _ndjson(phase_event(phase))
            try:
                result = await task
            except AnalysisError as exc:
                yield _ndjson({"event": "error", "message": exc.message, **describe_error(exc)})
            except Exception:
                logger.exception("Streamed analysis failed unexpectedly")
                yield _ndjson({
                    "event": "error",
                    "message": "서버 내부 오류가 발생했습니다",
                    "category": "unknown",
                    "retryable": True,
                })
            else:
                yield _ndjson({"event": "result", "data": result.model_dump(mode="json")})
        finally:
            if not task.done():
                logger.info("Stream closed early, cancelling analysis")
                token.cancel()
                task.add_done_callback(lambda t: t.cancelled() or t.exception())

    return StreamingResponse(_events(), media_type="application/x-ndjson")
