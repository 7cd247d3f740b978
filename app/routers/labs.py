from fastapi import APIRouter

from app.config import settings
from app.schemas.analysis import LabResponse
from app.services.prompts import LAB_INFO
from app.utils.response import success_response

router = APIRouter(prefix="/labs", tags=["labs"])


@router.get("")
async def get_labs():
    labs = [
        LabResponse(id=lab, icon=info.icon, title=info.title, description=info.description).model_dump(mode="json")
        for lab, info in LAB_INFO.items()
    ]
    return success_response(data={"labs": labs, "max_images": settings.max_images})
