"""Tests for the push-to-talk coordinator."""

import asyncio

from nutrivoice.domain.errors import (
    DeviceUnavailableError,
    UpstreamOverloadedError,
)
from nutrivoice.domain.extraction import ExtractionResult
from nutrivoice.services.reconciler import SessionStateReconciler
from nutrivoice.services.recording import CaptureLock
from nutrivoice.services.voice_log import VoiceLogCoordinator, format_error
from tests.conftest import (
    FakeCaptureDevice,
    FakeExtractionClient,
    InMemoryNutritionRepository,
    make_entry,
    make_session,
    tone,
)


def _coordinator(
    reconciler: SessionStateReconciler,
    device: FakeCaptureDevice,
    client: FakeExtractionClient,
    errors: list[str],
    **session_options: object,
) -> VoiceLogCoordinator:
    lock = CaptureLock()
    return VoiceLogCoordinator(
        reconciler,
        lambda: make_session(device, client, lock, **session_options),
        on_error=errors.append,
    )


def test_press_and_release_logs_foods(
    reconciler: SessionStateReconciler,
    repository: InMemoryNutritionRepository,
    capture_device: FakeCaptureDevice,
    extraction_client: FakeExtractionClient,
) -> None:
    errors: list[str] = []
    extraction_client.outcomes.append(
        ExtractionResult(
            transcription="two eggs and toast",
            foods=[make_entry("Eggs", quantity="2"), make_entry("Toast")],
        )
    )
    coordinator = _coordinator(reconciler, capture_device, extraction_client, errors)

    async def scenario() -> ExtractionResult | None:
        assert await coordinator.press()
        capture_device.emit(tone())
        return await coordinator.release()

    result = asyncio.run(scenario())

    assert result is not None
    assert errors == []
    assert not coordinator.active
    assert reconciler.active_meal_id is None
    assert len(reconciler.meals) == 1
    meal = reconciler.meals[0]
    assert meal.transcript_snippet == "two eggs and toast"
    assert not meal.awaiting_extraction
    assert sorted(item.name for item in reconciler.items) == ["Eggs", "Toast"]
    assert len(repository.items) == 2


def test_second_press_is_ignored_while_recording(
    reconciler: SessionStateReconciler,
    capture_device: FakeCaptureDevice,
    extraction_client: FakeExtractionClient,
) -> None:
    coordinator = _coordinator(reconciler, capture_device, extraction_client, [])

    async def scenario() -> None:
        assert await coordinator.press()
        assert not await coordinator.press()
        await coordinator.release()

    asyncio.run(scenario())

    assert capture_device.opened == 1
    assert len(extraction_client.calls) == 1


def test_release_before_microphone_ready_cancels(
    reconciler: SessionStateReconciler,
    extraction_client: FakeExtractionClient,
) -> None:
    device = FakeCaptureDevice(gate=asyncio.Event())
    coordinator = _coordinator(reconciler, device, extraction_client, [])

    async def scenario() -> bool:
        pressing = asyncio.create_task(coordinator.press())
        while device.opened == 0:
            await asyncio.sleep(0.001)
        assert await coordinator.release() is None
        assert device.gate is not None
        device.gate.set()
        return await pressing

    assert asyncio.run(scenario()) is False
    assert extraction_client.calls == []
    assert reconciler.meals == []
    assert not coordinator.active


def test_device_failure_reports_and_discards_meal(
    reconciler: SessionStateReconciler,
    repository: InMemoryNutritionRepository,
    extraction_client: FakeExtractionClient,
) -> None:
    errors: list[str] = []
    device = FakeCaptureDevice(error=DeviceUnavailableError("Microphone blocked"))
    coordinator = _coordinator(reconciler, device, extraction_client, errors)

    assert asyncio.run(coordinator.press()) is False

    assert errors == ["Microphone blocked"]
    assert reconciler.meals == []
    assert repository.meals == {}
    assert not coordinator.active


def test_extraction_error_reports_and_discards_meal(
    reconciler: SessionStateReconciler,
    capture_device: FakeCaptureDevice,
    extraction_client: FakeExtractionClient,
) -> None:
    errors: list[str] = []
    extraction_client.outcomes.append(
        UpstreamOverloadedError(
            "Model overloaded", details="Gemini is busy. Try again in a moment."
        )
    )
    coordinator = _coordinator(reconciler, capture_device, extraction_client, errors)

    async def scenario() -> ExtractionResult | None:
        await coordinator.press()
        capture_device.emit(tone())
        return await coordinator.release()

    assert asyncio.run(scenario()) is None
    assert errors == ["Model overloaded"]
    assert reconciler.meals == []
    assert not coordinator.active


def test_meal_create_failure_is_reported(
    reconciler: SessionStateReconciler,
    repository: InMemoryNutritionRepository,
    capture_device: FakeCaptureDevice,
    extraction_client: FakeExtractionClient,
) -> None:
    errors: list[str] = []
    repository.fail_on.add("insert_meal")
    coordinator = _coordinator(reconciler, capture_device, extraction_client, errors)

    assert asyncio.run(coordinator.press()) is False

    assert errors == ["insert_meal: boom"]
    assert capture_device.opened == 0


def test_response_timeout_closes_meal_and_drops_late_result(
    reconciler: SessionStateReconciler,
    capture_device: FakeCaptureDevice,
) -> None:
    gate = asyncio.Event()
    client = FakeExtractionClient(
        outcomes=[ExtractionResult(foods=[make_entry()])], gate=gate
    )
    coordinator = _coordinator(
        reconciler, capture_device, client, [], response_timeout=0.01
    )

    async def scenario() -> ExtractionResult | None:
        await coordinator.press()
        capture_device.emit(tone())
        result = await coordinator.release()
        gate.set()
        await asyncio.sleep(0.01)
        return result

    assert asyncio.run(scenario()) is None
    assert reconciler.items == []
    assert reconciler.meals == []
    assert not coordinator.active


def test_format_error_adds_detail_when_debugging() -> None:
    error = UpstreamOverloadedError("Model overloaded", details="busy")

    assert format_error(error) == "Model overloaded"
    assert (
        format_error(error, debug=True)
        == "Model overloaded (busy) [upstream_overloaded]"
    )


def test_late_release_leaves_newer_recording_alone(
    reconciler: SessionStateReconciler,
    capture_device: FakeCaptureDevice,
) -> None:
    errors: list[str] = []
    gate = asyncio.Event()
    client = FakeExtractionClient(
        outcomes=[
            ExtractionResult(foods=[make_entry("Stale")]),
            ExtractionResult(foods=[make_entry("Toast")]),
        ],
        gate=gate,
    )
    coordinator = _coordinator(reconciler, capture_device, client, errors)

    async def scenario() -> tuple[ExtractionResult | None, ExtractionResult | None]:
        await coordinator.press()
        capture_device.emit(tone())
        releasing = asyncio.create_task(coordinator.release())
        while not client.calls:
            await asyncio.sleep(0.001)
        await coordinator.cancel()
        assert await coordinator.press()
        gate.set()
        stale = await releasing
        assert coordinator.active
        capture_device.emit(tone())
        return stale, await coordinator.release()

    stale, result = asyncio.run(scenario())

    assert stale is None
    assert result is not None
    assert errors == []
    assert not coordinator.active
    assert [item.name for item in reconciler.items] == ["Toast"]
    assert len(reconciler.meals) == 1
    assert [handle.closed for handle in capture_device.handles] == [1, 1]

    assert asyncio.run(coordinator.press())
    assert capture_device.opened == 3


def test_cancel_while_microphone_opens_discards_meal(
    reconciler: SessionStateReconciler,
    extraction_client: FakeExtractionClient,
) -> None:
    errors: list[str] = []
    device = FakeCaptureDevice(gate=asyncio.Event())
    coordinator = _coordinator(reconciler, device, extraction_client, errors)

    async def scenario() -> bool:
        pressing = asyncio.create_task(coordinator.press())
        while device.opened == 0:
            await asyncio.sleep(0.001)
        await coordinator.cancel()
        assert device.gate is not None
        device.gate.set()
        return await pressing

    assert asyncio.run(scenario()) is False
    assert errors == []
    assert reconciler.meals == []
    assert device.handles[0].closed == 1
    assert not coordinator.active
