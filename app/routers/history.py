from fastapi import APIRouter, Depends

from app.dependencies import get_device_id, get_history_store
from app.schemas.analysis import HistoryResponse
from app.services.history_store import HistoryStore
from app.utils.response import success_response

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def get_history(
    device_id: str = Depends(get_device_id),
    store: HistoryStore = Depends(get_history_store),
):
    items = await store.load(device_id)
    data = HistoryResponse(items=items, capacity=store.capacity).model_dump(mode="json")
    return success_response(data=data)


@router.delete("")
async def clear_history(
    device_id: str = Depends(get_device_id),
    store: HistoryStore = Depends(get_history_store),
):
    await store.clear(device_id)
    return success_response(data=None, message="히스토리가 삭제되었습니다")
