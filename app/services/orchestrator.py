"""Batch analysis orchestrator.

Turns one AnalysisRequest into exactly one AnalysisResult, or raises one
classified AnalysisError. Two strategies are supported:

* combined: every image goes into a single completion call.
* sequential: one call per image in submission order, then (for more than
  one image) a text-only call that summarizes the per-image analyses.

Calls are awaited one at a time. The first failure aborts the rest of the
batch and nothing partial is returned. Persisting the result is the
caller's job.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Protocol, Union

from app.config import settings
from app.schemas.analysis import AnalysisMode, AnalysisRequest, AnalysisResult
from app.services.image_intake import parse_data_uri
from app.services.prompts import (
    ANALYSIS_SEPARATOR,
    LAB_PROMPTS,
    SUMMARY_HEADING,
    SYSTEM_INSTRUCTION,
    LabType,
    per_image_prompt,
    resolve_lab,
    summary_prompt,
)
from app.utils.exceptions import AnalysisCancelled, AnalysisError, InputValidationError

logger = logging.getLogger(__name__)


class VisionService(Protocol):
    async def complete(self, system_instruction: str, user_prompt: str, images: list[str]) -> str:
        ...


class ProgressStep(str, Enum):
    IMAGE_PROCESSING = "image_processing"
    MODEL_INFERENCE = "model_inference"
    RESULT_FORMATTING = "result_formatting"


@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class Validating:
    name = "validating"


@dataclass(frozen=True)
class Running:
    step: ProgressStep
    index: int = 0  # 1-based image number, 0 when the step covers the whole batch
    total: int = 0
    name = "running"


@dataclass(frozen=True)
class Summarizing:
    total: int
    name = "summarizing"


@dataclass(frozen=True)
class Succeeded:
    result: AnalysisResult
    name = "succeeded"


@dataclass(frozen=True)
class Failed:
    error: AnalysisError
    name = "failed"


@dataclass(frozen=True)
class Cancelled:
    name = "cancelled"


Phase = Union[Idle, Validating, Running, Summarizing, Succeeded, Failed, Cancelled]
PhaseCallback = Callable[[Phase], Union[None, Awaitable[None]]]


class CancellationToken:
    """Cooperative cancellation flag, checked before every outbound call."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise AnalysisCancelled("사용자가 분석을 취소했습니다.")


class BatchAnalysisOrchestrator:
    """Runs a single analysis request. Build a new instance per request."""

    def __init__(
        self,
        vision: VisionService,
        max_images: int | None = None,
        on_phase: PhaseCallback | None = None,
        token: CancellationToken | None = None,
    ):
        self.vision = vision
        self.max_images = max_images or settings.max_images
        self.on_phase = on_phase
        self.token = token or CancellationToken()
        self.phase: Phase = Idle()

    async def _enter(self, phase: Phase) -> None:
        self.phase = phase
        if self.on_phase is not None:
            outcome = self.on_phase(phase)
            if outcome is not None:
                await outcome

    def _validate(self, request: AnalysisRequest) -> tuple[LabType, list[str]]:
        try:
            lab = resolve_lab(request.category)
        except ValueError:
            raise InputValidationError(f"알 수 없는 분석 종류입니다: {request.category!r}") from None

        if not request.images:
            raise InputValidationError("분석할 이미지를 1장 이상 선택해주세요.")
        if len(request.images) > self.max_images:
            raise InputValidationError(f"이미지는 최대 {self.max_images}장까지 분석할 수 있습니다.")

        return lab, [parse_data_uri(image) for image in request.images]

    async def _call(self, user_prompt: str, images: list[str]) -> str:
        self.token.raise_if_cancelled()
        text = await self.vision.complete(SYSTEM_INSTRUCTION, user_prompt, images)
        self.token.raise_if_cancelled()
        return text

    async def _run_combined(self, lab: LabType, images: list[str]) -> str:
        await self._enter(Running(ProgressStep.MODEL_INFERENCE, total=len(images)))
        return await self._call(LAB_PROMPTS[lab], images)

    async def _run_sequential(self, lab: LabType, images: list[str]) -> str:
        total = len(images)
        analyses: list[str] = []
        for index, image in enumerate(images, start=1):
            await self._enter(Running(ProgressStep.MODEL_INFERENCE, index=index, total=total))
            analyses.append(await self._call(per_image_prompt(lab, index, total), [image]))

        text = ANALYSIS_SEPARATOR.join(analyses)
        if total > 1:
            await self._enter(Summarizing(total=total))
            summary = await self._call(summary_prompt(lab, analyses), [])
            text = f"{text}{ANALYSIS_SEPARATOR}{SUMMARY_HEADING}\n\n{summary}"
        return text

    async def run(self, request: AnalysisRequest) -> AnalysisResult:
        """Execute the request; raises AnalysisError (or AnalysisCancelled) on failure."""
        try:
            await self._enter(Validating())
            lab, images = self._validate(request)
            logger.info(
                "Analysis started: lab=%s images=%d mode=%s",
                lab.value, len(images), request.mode.value,
            )

            await self._enter(Running(ProgressStep.IMAGE_PROCESSING, total=len(images)))
            if request.mode == AnalysisMode.SEQUENTIAL:
                text = await self._run_sequential(lab, images)
            else:
                text = await self._run_combined(lab, images)

            await self._enter(Running(ProgressStep.RESULT_FORMATTING, total=len(images)))
            result = AnalysisResult(
                id=uuid.uuid4().hex,
                category=lab,
                images=images,
                analysis=text,
                timestamp=datetime.now(timezone.utc),
            )
        except AnalysisCancelled:
            logger.info("Analysis cancelled")
            await self._enter(Cancelled())
            raise
        except AnalysisError as exc:
            logger.warning("Analysis failed (%s): %s", exc.category.value, exc.message)
            await self._enter(Failed(exc))
            raise

        await self._enter(Succeeded(result))
        logger.info("Analysis completed: id=%s (%d chars)", result.id, len(result.analysis))
        return result
