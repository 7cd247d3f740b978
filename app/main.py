import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import create_tables
from app.dependencies import verify_api_key
from app.routers.analyze import router as analyze_router
from app.routers.history import router as history_router
from app.routers.labs import router as labs_router
from app.utils.exceptions import register_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not configured, analysis requests will fail")
    yield


app = FastAPI(
    title="AI Lab API",
    description="사진으로 서재, 냉장고, 옷장, 위스키 컬렉션을 분석하는 AI Lab 백엔드",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

_api_key_dep = [Depends(verify_api_key)]

app.include_router(labs_router, prefix="/api/v1", dependencies=_api_key_dep)
app.include_router(analyze_router, prefix="/api/v1", dependencies=_api_key_dep)
app.include_router(history_router, prefix="/api/v1", dependencies=_api_key_dep)


@app.get("/health")
async def health_check():
    return {"status": "success", "data": {"service": "ai-lab-api", "version": "0.1.0"}, "message": None}
