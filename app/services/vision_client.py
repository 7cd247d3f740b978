"""Chat-completion client for the vision model, with failure classification."""
import logging

import openai
from openai import AsyncOpenAI

from app.config import settings
from app.utils.exceptions import (
    ContentRefusalError,
    MalformedResponseError,
    TransportError,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)

REFUSAL_PHRASES = (
    "can't assist",
    "can’t assist",
    "cannot assist",
    "unable to assist",
    "content_policy",
    "content policy",
)

REFUSAL_MESSAGE = "이미지 분석이 거부되었습니다. 더 밝고 깨끗한 사진으로 다시 시도해주세요."


def is_refusal(text: str | None) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(phrase in lowered for phrase in REFUSAL_PHRASES)


def build_messages(system_instruction: str, user_prompt: str, images: list[str]) -> list[dict]:
    content: list[dict] = [{"type": "text", "text": user_prompt}]
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image}})
    return [
        {"role": "system", "content": system_instruction},
        {"role": "user", "content": content},
    ]


def build_api_kwargs(model: str, messages: list[dict], max_output_tokens: int) -> dict:
    """Build chat completion kwargs based on model type."""
    api_kwargs: dict = {"model": model, "messages": messages}

    if model.startswith("o"):
        # o-series reasoning models (o1, o3, o4-mini, etc.) reject max_tokens
        api_kwargs["max_completion_tokens"] = max_output_tokens
    else:
        api_kwargs["max_tokens"] = max_output_tokens

    return api_kwargs


def classify_openai_error(exc: Exception) -> Exception:
    """Map an SDK exception to the matching analysis error."""
    if isinstance(exc, openai.APITimeoutError):
        return TransportError(f"AI 서비스 응답 시간이 초과되었습니다: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return TransportError(f"AI 서비스에 연결할 수 없습니다: {exc}")

    detail = str(exc)
    body = getattr(exc, "body", None)
    if body is not None:
        detail = f"{detail} {body}"
    if is_refusal(detail):
        return ContentRefusalError(REFUSAL_MESSAGE)

    if isinstance(exc, openai.APIStatusError):
        return UpstreamServiceError(
            f"AI 서비스 오류 (HTTP {exc.status_code}): {getattr(exc, 'message', exc)}"
        )
    return UpstreamServiceError(f"AI 서비스 오류: {exc}")


def extract_text(response) -> str:
    """Return the completion text or raise a classified error."""
    choices = getattr(response, "choices", None)
    if not choices:
        raise MalformedResponseError("AI 서비스 응답에 결과가 없습니다.")

    message = getattr(choices[0], "message", None)
    if message is None:
        raise MalformedResponseError("AI 서비스 응답 형식이 올바르지 않습니다.")

    if getattr(message, "refusal", None):
        raise ContentRefusalError(REFUSAL_MESSAGE)

    content = getattr(message, "content", None)
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponseError("AI 서비스가 빈 응답을 반환했습니다.")

    text = content.strip()
    # a bare refusal sentence instead of an analysis
    if len(text) < 200 and is_refusal(text):
        raise ContentRefusalError(REFUSAL_MESSAGE)
    return text


class VisionClient:
    """Thin async wrapper around the chat completions endpoint.

    Every call is a single attempt; retrying is the caller's decision.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        max_output_tokens: int | None = None,
        timeout: float | None = None,
    ):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.openai_model
        self.base_url = settings.openai_base_url if base_url is None else base_url
        self.max_output_tokens = max_output_tokens or settings.max_output_tokens
        self.timeout = timeout or settings.request_timeout_seconds
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs: dict = {"api_key": self.api_key, "timeout": self.timeout, "max_retries": 0}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def complete(self, system_instruction: str, user_prompt: str, images: list[str]) -> str:
        if not self.api_key:
            logger.error("OPENAI_API_KEY not configured")
            raise UpstreamServiceError("OpenAI API 키가 설정되지 않았습니다.")

        logger.info("Calling OpenAI model=%s with %d images", self.model, len(images))
        try:
            response = await self._get_client().chat.completions.create(
                **build_api_kwargs(
                    self.model,
                    build_messages(system_instruction, user_prompt, images),
                    self.max_output_tokens,
                )
            )
        except openai.OpenAIError as exc:
            error = classify_openai_error(exc)
            logger.warning("OpenAI call failed (%s): %s", type(error).__name__, error)
            raise error from exc

        text = extract_text(response)
        logger.info("OpenAI response received (%d chars)", len(text))
        return text
