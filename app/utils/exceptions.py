import logging
import re
from enum import Enum
from types import MappingProxyType

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from app.utils.response import error_response

logger = logging.getLogger(__name__)

_SECRET_PATTERN = re.compile(r"sk-[A-Za-z0-9_-]+")


def mask_secrets(message: str) -> str:
    """Mask API keys and tokens before a message leaves the process."""
    return _SECRET_PATTERN.sub("sk-***", message)


class ErrorCategory(str, Enum):
    INPUT_VALIDATION = "input_validation"
    NETWORK_TRANSPORT = "network_transport"
    UPSTREAM_SERVICE = "upstream_service"
    MALFORMED_RESPONSE = "malformed_response"
    CANCELLED = "cancelled"


class AppException(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AnalysisError(AppException):
    """Base for every failure of an analysis request."""

    category = ErrorCategory.UPSTREAM_SERVICE
    status_code = 500
    retryable = True
    refusal = False

    def __init__(self, message: str):
        super().__init__(mask_secrets(message), status_code=type(self).status_code)


class InputValidationError(AnalysisError):
    category = ErrorCategory.INPUT_VALIDATION
    status_code = 400
    retryable = False


class TransportError(AnalysisError):
    category = ErrorCategory.NETWORK_TRANSPORT
    status_code = 503


class UpstreamServiceError(AnalysisError):
    category = ErrorCategory.UPSTREAM_SERVICE
    status_code = 502


class ContentRefusalError(UpstreamServiceError):
    """The model refused the images on content-policy grounds."""

    status_code = 400
    retryable = False
    refusal = True


class MalformedResponseError(AnalysisError):
    category = ErrorCategory.MALFORMED_RESPONSE
    status_code = 502


class AnalysisCancelled(AnalysisError):
    category = ErrorCategory.CANCELLED
    status_code = 499


ERROR_GUIDANCE = MappingProxyType({
    ErrorCategory.INPUT_VALIDATION: (
        "업로드 오류",
        (
            "이미지 파일이 올바른 형식인지 확인해주세요 (JPG, PNG 등)",
            "파일 크기가 너무 크지 않은지 확인해주세요",
            "분석할 랩을 선택하고 사진을 1장 이상 올려주세요",
        ),
    ),
    ErrorCategory.NETWORK_TRANSPORT: (
        "네트워크 오류",
        (
            "인터넷 연결을 확인해주세요",
            "Wi-Fi 또는 데이터 연결 상태를 점검해주세요",
            "VPN을 사용 중이라면 잠시 끄고 시도해주세요",
        ),
    ),
    ErrorCategory.UPSTREAM_SERVICE: (
        "API 오류",
        (
            "OpenAI API 키가 올바른지 확인해주세요",
            "API 사용량이 한도를 초과하지 않았는지 확인해주세요",
            "잠시 후 다시 시도해주세요",
        ),
    ),
    ErrorCategory.MALFORMED_RESPONSE: (
        "응답 오류",
        (
            "잠시 후 다시 시도해주세요",
            "문제가 계속되면 고객센터에 문의해주세요",
        ),
    ),
    ErrorCategory.CANCELLED: (
        "분석 취소됨",
        (
            "분석이 중단되었습니다",
            "다시 시도하면 처음부터 분석합니다",
        ),
    ),
})

REFUSAL_GUIDANCE = (
    "분석 거부됨",
    (
        "더 밝고 선명한 사진으로 다시 시도해주세요",
        "사물이 잘 보이도록 가까이에서 촬영해주세요",
        "사람 얼굴이나 개인정보가 나오지 않도록 해주세요",
    ),
)


def describe_error(exc: AnalysisError) -> dict:
    """Build the error payload a client needs to render and offer a retry."""
    title, suggestions = REFUSAL_GUIDANCE if exc.refusal else ERROR_GUIDANCE[exc.category]
    return {
        "category": exc.category.value,
        "title": title,
        "retryable": exc.retryable,
        "refusal": exc.refusal,
        "suggestions": list(suggestions),
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AnalysisError)
    async def analysis_exception_handler(request: Request, exc: AnalysisError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.message, data=describe_error(exc)),
        )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.message),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"잘못된 요청입니다: {field} {first.get('msg', '')}".strip()
        return JSONResponse(
            status_code=400,
            content=error_response(message, data=describe_error(InputValidationError(message))),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_response("서버 내부 오류가 발생했습니다"),
        )
