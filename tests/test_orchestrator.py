import pytest

from app.schemas.analysis import AnalysisMode, AnalysisRequest
from app.services.orchestrator import (
    BatchAnalysisOrchestrator,
    CancellationToken,
    Cancelled,
    Failed,
    Running,
    Succeeded,
    Summarizing,
    Validating,
)
from app.services.prompts import LAB_PROMPTS, SUMMARY_HEADING, SYSTEM_INSTRUCTION, LabType
from app.utils.exceptions import (
    AnalysisCancelled,
    ContentRefusalError,
    ErrorCategory,
    InputValidationError,
    TransportError,
)
from tests.fakes import FakeVision


def _request(png_data_uri, count=1, category="fridge", mode=AnalysisMode.SEQUENTIAL):
    return AnalysisRequest(category=category, images=[png_data_uri] * count, mode=mode)


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", list(AnalysisMode))
@pytest.mark.parametrize("lab", ["bookshelf", "fridge", "closet", "whisky"])
async def test_success_returns_text(png_data_uri, mode, lab):
    vision = FakeVision()
    result = await BatchAnalysisOrchestrator(vision).run(_request(png_data_uri, 2, lab, mode))

    assert result.analysis
    assert result.category == LabType(lab)
    assert result.images == [png_data_uri, png_data_uri]
    assert result.timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_combined_mode_single_call_with_all_images(png_data_uri):
    vision = FakeVision(replies=["whole batch"])
    result = await BatchAnalysisOrchestrator(vision).run(
        _request(png_data_uri, 3, "closet", AnalysisMode.COMBINED)
    )

    assert len(vision.calls) == 1
    call = vision.calls[0]
    assert call["system"] == SYSTEM_INSTRUCTION
    assert call["prompt"] == LAB_PROMPTS[LabType.CLOSET]
    assert len(call["images"]) == 3
    assert result.analysis == "whole batch"


@pytest.mark.asyncio
async def test_sequential_fridge_three_images(png_data_uri):
    vision = FakeVision(replies=["T1", "T2", "T3", "S"])
    result = await BatchAnalysisOrchestrator(vision).run(_request(png_data_uri, 3))

    assert len(vision.calls) == 4
    for i, call in enumerate(vision.calls[:3], start=1):
        assert len(call["images"]) == 1
        assert f"전체 3장 중 {i}번째" in call["prompt"]

    summary_call = vision.calls[3]
    assert summary_call["images"] == []
    for text in ("T1", "T2", "T3"):
        assert text in summary_call["prompt"]

    assert result.analysis.startswith("T1\n\n---\n\nT2\n\n---\n\nT3")
    assert result.analysis == f"T1\n\n---\n\nT2\n\n---\n\nT3\n\n---\n\n{SUMMARY_HEADING}\n\nS"


@pytest.mark.asyncio
async def test_sequential_single_image_skips_summary(png_data_uri):
    vision = FakeVision(replies=["only"])
    result = await BatchAnalysisOrchestrator(vision).run(_request(png_data_uri, 1))

    assert len(vision.calls) == 1
    assert result.analysis == "only"
    assert SUMMARY_HEADING not in result.analysis


@pytest.mark.asyncio
async def test_sequential_calls_follow_submission_order():
    images = [f"data:image/jpeg;base64,{p}" for p in ("QUFB", "QkJC", "Q0ND")]
    vision = FakeVision()
    await BatchAnalysisOrchestrator(vision).run(
        AnalysisRequest(category="bookshelf", images=images, mode=AnalysisMode.SEQUENTIAL)
    )

    assert [c["images"] for c in vision.calls[:3]] == [[images[0]], [images[1]], [images[2]]]


@pytest.mark.asyncio
async def test_sequential_failure_aborts_remaining_calls(png_data_uri):
    vision = FakeVision(fail_at=1, error=TransportError("offline"))
    orchestrator = BatchAnalysisOrchestrator(vision)

    with pytest.raises(TransportError):
        await orchestrator.run(_request(png_data_uri, 4))

    # call 0 succeeded, call 1 failed, nothing after it
    assert len(vision.calls) == 2
    assert isinstance(orchestrator.phase, Failed)
    assert orchestrator.phase.error.category == ErrorCategory.NETWORK_TRANSPORT


@pytest.mark.asyncio
async def test_summary_failure_fails_whole_request(png_data_uri):
    vision = FakeVision(fail_at=2, error=ContentRefusalError("nope"))

    with pytest.raises(ContentRefusalError):
        await BatchAnalysisOrchestrator(vision).run(_request(png_data_uri, 2))
    assert len(vision.calls) == 3


@pytest.mark.asyncio
async def test_no_images_is_input_validation_without_calls():
    vision = FakeVision()
    with pytest.raises(InputValidationError) as exc_info:
        await BatchAnalysisOrchestrator(vision).run(AnalysisRequest(category="fridge", images=[]))

    assert exc_info.value.category == ErrorCategory.INPUT_VALIDATION
    assert exc_info.value.retryable is False
    assert vision.calls == []


@pytest.mark.asyncio
async def test_unknown_category_is_input_validation(png_data_uri):
    vision = FakeVision()
    with pytest.raises(InputValidationError, match="알 수 없는 분석 종류"):
        await BatchAnalysisOrchestrator(vision).run(_request(png_data_uri, category="garage"))
    assert vision.calls == []


@pytest.mark.asyncio
async def test_too_many_images_rejected(png_data_uri):
    vision = FakeVision()
    with pytest.raises(InputValidationError):
        await BatchAnalysisOrchestrator(vision, max_images=2).run(_request(png_data_uri, 3))
    assert vision.calls == []


@pytest.mark.asyncio
async def test_blank_image_payload_rejected(png_data_uri):
    vision = FakeVision()
    request = AnalysisRequest(category="fridge", images=[png_data_uri, "  "])
    with pytest.raises(InputValidationError):
        await BatchAnalysisOrchestrator(vision).run(request)
    assert vision.calls == []


@pytest.mark.asyncio
async def test_category_aliases_resolve(png_data_uri):
    result = await BatchAnalysisOrchestrator(FakeVision()).run(
        _request(png_data_uri, category="library", mode=AnalysisMode.COMBINED)
    )
    assert result.category == LabType.BOOKSHELF

    result = await BatchAnalysisOrchestrator(FakeVision()).run(
        _request(png_data_uri, category="whiskey", mode=AnalysisMode.COMBINED)
    )
    assert result.category == LabType.WHISKY


@pytest.mark.asyncio
async def test_phase_sequence(png_data_uri):
    phases = []
    orchestrator = BatchAnalysisOrchestrator(FakeVision(), on_phase=phases.append)
    await orchestrator.run(_request(png_data_uri, 2))

    assert isinstance(phases[0], Validating)
    running = [p for p in phases if isinstance(p, Running)]
    assert [p.step.value for p in running] == [
        "image_processing", "model_inference", "model_inference", "result_formatting",
    ]
    assert [(p.index, p.total) for p in running[1:3]] == [(1, 2), (2, 2)]
    assert any(isinstance(p, Summarizing) for p in phases)
    assert isinstance(phases[-1], Succeeded)
    assert orchestrator.phase is phases[-1]


@pytest.mark.asyncio
async def test_async_phase_callback_is_awaited(png_data_uri):
    seen = []

    async def on_phase(phase):
        seen.append(phase.name)

    await BatchAnalysisOrchestrator(FakeVision(), on_phase=on_phase).run(_request(png_data_uri))
    assert seen[0] == "validating"
    assert seen[-1] == "succeeded"


@pytest.mark.asyncio
async def test_cancellation_stops_further_calls(png_data_uri):
    token = CancellationToken()

    def cancel_after_first(index):
        if index == 0:
            token.cancel()

    vision = FakeVision(on_call=cancel_after_first)
    orchestrator = BatchAnalysisOrchestrator(vision, token=token)

    with pytest.raises(AnalysisCancelled) as exc_info:
        await orchestrator.run(_request(png_data_uri, 3))

    assert len(vision.calls) == 1
    assert exc_info.value.category == ErrorCategory.CANCELLED
    assert isinstance(orchestrator.phase, Cancelled)


@pytest.mark.asyncio
async def test_cancelled_before_start_makes_no_calls(png_data_uri):
    token = CancellationToken()
    token.cancel()
    vision = FakeVision()

    with pytest.raises(AnalysisCancelled):
        await BatchAnalysisOrchestrator(vision, token=token).run(_request(png_data_uri))
    assert vision.calls == []
