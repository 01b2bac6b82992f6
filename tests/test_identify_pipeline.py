"""Batch orchestrator: sequencing, error isolation, timing and sink hand-off."""

import asyncio
import json
from typing import List

import pytest

from clients.errors import CaptureError, ClassificationError, ErrorKind
from clients.image_source import EncodedImage, ImageSource, SourceKind
from clients.llm_client import ClassificationClient
from clients.location_client import GeolocationResolver
from models.analysis_record import Coordinates, UNKNOWN_PROFILE_ID
from pipelines.identify_pipeline import IdentifyPipeline, ListSink, PipelineState

from conftest import fake_openai, no_match_payload, outcome


class ScriptedClassifier:
    """Returns (or raises) one scripted result per call, optionally after a delay."""

    def __init__(self, script, delay: float = 0.0):
        self.script = list(script)
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def classify(self, image, profiles):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.script.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1


class FixedProvider:
    def __init__(self, coords=None, delay: float = 0.0):
        self.coords = coords
        self.delay = delay

    async def locate(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.coords


def images(n: int) -> List[EncodedImage]:
    return [EncodedImage.from_bytes(f"img-{i}".encode(), name=f"img{i}.jpg") for i in range(1, n + 1)]


def malformed() -> ClassificationError:
    return ClassificationError(ErrorKind.MALFORMED_RESPONSE, "bad json")


async def collect(pipeline, sources, profiles, continue_on_error):
    return [r async for r in pipeline.run(sources, profiles, continue_on_error)]


async def test_batch_continues_past_failed_item(profiles):
    classifier = ScriptedClassifier([outcome(), outcome(), malformed(), outcome(), outcome()])
    sink = ListSink()
    errors, progress = [], []
    pipeline = IdentifyPipeline(
        classifier, GeolocationResolver(), sink,
        on_progress=lambda i, n: progress.append((i, n)),
        on_error=lambda i, e: errors.append((i, e)),
    )

    results = await collect(pipeline, images(5), profiles, continue_on_error=True)

    assert classifier.calls == 5
    assert len(sink.records) == 4
    assert [(i, e.kind) for i, e in errors] == [(3, ErrorKind.MALFORMED_RESPONSE)]
    assert progress == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]
    assert [r.ok for r in results] == [True, True, False, True, True]
    assert results[2].error is errors[0][1]


async def test_single_image_failure_halts_without_record(profiles):
    sink = ListSink()
    errors = []
    pipeline = IdentifyPipeline(
        ScriptedClassifier([malformed()]), GeolocationResolver(), sink,
        on_error=lambda i, e: errors.append(e),
    )

    with pytest.raises(ClassificationError) as exc:
        await collect(pipeline, images(1), profiles, continue_on_error=False)

    assert exc.value.kind is ErrorKind.MALFORMED_RESPONSE
    assert sink.records == []
    assert errors == []
    assert pipeline.state is PipelineState.IDLE


async def test_fail_fast_stops_before_later_items(profiles):
    classifier = ScriptedClassifier([malformed(), outcome()])
    pipeline = IdentifyPipeline(classifier, GeolocationResolver(), ListSink())

    with pytest.raises(ClassificationError):
        await collect(pipeline, images(2), profiles, continue_on_error=False)

    assert classifier.calls == 1


async def test_empty_database_fails_whole_run_before_any_call():
    fake = fake_openai(no_match_payload())
    progress = []
    pipeline = IdentifyPipeline(
        ClassificationClient(client=fake), GeolocationResolver(), ListSink(),
        on_progress=lambda i, n: progress.append(i),
    )

    with pytest.raises(ClassificationError) as exc:
        await collect(pipeline, images(3), [], continue_on_error=True)

    assert exc.value.kind is ErrorKind.EMPTY_DATABASE
    assert fake.chat.completions.calls == []
    assert progress == []


async def test_items_never_overlap(profiles):
    classifier = ScriptedClassifier([outcome()] * 3, delay=0.02)
    pipeline = IdentifyPipeline(classifier, GeolocationResolver(), ListSink())

    await collect(pipeline, images(3), profiles, continue_on_error=True)

    assert classifier.max_active == 1


async def test_elapsed_matches_classification_time(profiles):
    sink = ListSink()
    pipeline = IdentifyPipeline(ScriptedClassifier([outcome()], delay=0.5), GeolocationResolver(), sink)

    await collect(pipeline, images(1), profiles, continue_on_error=False)

    assert sink.records[0].elapsed_seconds == pytest.approx(0.5, abs=0.1)


async def test_elapsed_covers_slower_geolocation_wait(profiles):
    sink = ListSink()
    resolver = GeolocationResolver(provider=FixedProvider(Coordinates(10.0, 20.0), delay=0.3))
    pipeline = IdentifyPipeline(
        ScriptedClassifier([outcome()], delay=0.2), resolver, sink, geolocation_timeout_ms=1000
    )

    await collect(pipeline, images(1), profiles, continue_on_error=False)

    record = sink.records[0]
    assert record.coordinates == Coordinates(10.0, 20.0)
    # Concurrent waits: about the longer of the two, not their sum
    assert 0.28 <= record.elapsed_seconds < 0.45


async def test_geolocation_bound_caps_item_time(profiles):
    sink = ListSink()
    resolver = GeolocationResolver(provider=FixedProvider(Coordinates(1.0, 1.0), delay=5))
    pipeline = IdentifyPipeline(
        ScriptedClassifier([outcome()]), resolver, sink, geolocation_timeout_ms=100
    )

    await collect(pipeline, images(1), profiles, continue_on_error=False)

    assert sink.records[0].coordinates is None
    assert sink.records[0].elapsed_seconds < 0.5


async def test_record_fields(profiles):
    sink = ListSink()
    resolver = GeolocationResolver(provider=FixedProvider(Coordinates(51.5, -0.1)))
    pipeline = IdentifyPipeline(ScriptedClassifier([outcome(UNKNOWN_PROFILE_ID, 1.0)]), resolver, sink)
    [image] = images(1)

    await collect(pipeline, [image], profiles, continue_on_error=False)

    [record] = sink.records
    assert record.matched_profile_id == UNKNOWN_PROFILE_ID
    assert record.confidence == 1.0
    assert record.source_image == image.data_url()
    assert record.source_name == "img1.jpg"
    assert record.coordinates == Coordinates(51.5, -0.1)
    assert record.is_favorite is False and record.is_incorrect is False


async def test_records_reach_sink_before_next_item(profiles):
    sink = ListSink()
    seen_at_progress = []
    pipeline = IdentifyPipeline(
        ScriptedClassifier([outcome()] * 3), GeolocationResolver(), sink,
        on_progress=lambda i, n: seen_at_progress.append(len(sink.records)),
    )

    await collect(pipeline, images(3), profiles, continue_on_error=True)

    assert seen_at_progress == [0, 1, 2]


async def test_capture_error_is_isolated_in_batch(tmp_path, profiles):
    good = tmp_path / "good.jpg"
    good.write_bytes(b"\xff\xd8jpeg")
    sources = [
        ImageSource(SourceKind.FILE, good),
        ImageSource(SourceKind.FILE, tmp_path / "missing.jpg"),
        str(good),
    ]
    errors = []
    sink = ListSink()
    pipeline = IdentifyPipeline(
        ScriptedClassifier([outcome(), outcome()]), GeolocationResolver(), sink,
        on_error=lambda i, e: errors.append((i, e)),
    )

    results = await collect(pipeline, sources, profiles, continue_on_error=True)

    assert len(results) == 3
    assert len(sink.records) == 2
    assert [i for i, _ in errors] == [2]
    assert isinstance(errors[0][1], CaptureError)


async def test_profile_snapshot_is_not_mutated(profiles):
    before = [p.to_dict() for p in profiles]
    pipeline = IdentifyPipeline(ScriptedClassifier([outcome()] * 2), GeolocationResolver(), ListSink())

    await collect(pipeline, images(2), profiles, continue_on_error=True)

    assert [p.to_dict() for p in profiles] == before


async def test_tick_hook_reports_live_elapsed(profiles):
    ticks = []
    pipeline = IdentifyPipeline(
        ScriptedClassifier([outcome()], delay=0.1), GeolocationResolver(), ListSink(),
        on_tick=ticks.append, tick_ms=10,
    )

    await collect(pipeline, images(1), profiles, continue_on_error=False)

    assert len(ticks) >= 3
    assert ticks == sorted(ticks)
    assert pipeline.current_elapsed == 0.0


async def test_elapsed_resets_between_items(profiles):
    seen = []
    pipeline = IdentifyPipeline(
        ScriptedClassifier([outcome()] * 3, delay=0.05), GeolocationResolver(), ListSink(),
    )
    pipeline.on_progress = lambda i, n: seen.append((i, pipeline.current_elapsed))

    await collect(pipeline, images(3), profiles, continue_on_error=True)

    assert seen == [(1, 0.0), (2, 0.0), (3, 0.0)]


async def test_state_during_run(profiles):
    pipeline = IdentifyPipeline(ScriptedClassifier([outcome()] * 2), GeolocationResolver(), ListSink())
    states = []

    async for result in pipeline.run(images(2), profiles, continue_on_error=True):
        states.append((pipeline.state, pipeline.position))

    assert states == [
        (PipelineState.RUNNING, (1, 2)),
        (PipelineState.RUNNING, (2, 2)),
    ]
    assert pipeline.state is PipelineState.IDLE


async def test_concurrent_run_is_rejected(profiles):
    pipeline = IdentifyPipeline(ScriptedClassifier([outcome()] * 2), GeolocationResolver(), ListSink())
    first = pipeline.run(images(2), profiles, continue_on_error=True)
    await first.__anext__()

    with pytest.raises(RuntimeError):
        await collect(pipeline, images(1), profiles, continue_on_error=True)

    await first.aclose()
    assert pipeline.state is PipelineState.IDLE


async def test_run_all_summary(profiles, run_logger):
    classifier = ScriptedClassifier([outcome(), malformed(), outcome()])
    pipeline = IdentifyPipeline(classifier, GeolocationResolver(), ListSink())

    summary = await pipeline.run_all(images(3), profiles, continue_on_error=True)

    assert summary["attempted"] == 3
    assert summary["succeeded"] == 2
    assert summary["failed"] == 1
    assert summary["errors"][0]["index"] == 2
    assert summary["errors"][0]["image"] == "img2.jpg"

    steps = [json.loads(line)["step"] for line in run_logger.log_file.read_text().splitlines()]
    assert steps == ["item 1/3", "item 2/3", "item 3/3"]
