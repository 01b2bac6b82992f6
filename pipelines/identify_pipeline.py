"""
Batch identification pipeline.

N images in, one AnalysisRecord (or one error) out per image.

Per item:
- capture the image (file read / camera frame)
- start the clock
- resolve geolocation (bounded) and classify, concurrently
- stop the clock: elapsed_seconds is wall-clock time for both waits together
- hand the record to the result sink immediately

Items run strictly one after another. With continue_on_error=True a failing
item is reported through on_error and the run moves on, so every item is
attempted. With continue_on_error=False (single-image mode) the first error
is raised to the caller and nothing is recorded. An empty profile snapshot
fails the whole run before any item starts, in both modes.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from clients.errors import ClassificationError, ErrorKind, IdentifyError
from clients.image_source import EncodedImage, ImageSource, SourceKind
from clients.location_client import GeolocationResolver
from config import CONFIG, get_logger, Timer
from models.analysis_record import AnalysisRecord, ClassificationOutcome, Coordinates
from models.plant_profile import ReferenceProfile
from pipelines.output import ItemResult, RunSummary, make_summary

log = logging.getLogger(__name__)

Source = Union[EncodedImage, ImageSource, str, Path]


class Classifier(Protocol):
    async def classify(
        self, image: EncodedImage, profiles: Sequence[ReferenceProfile]
    ) -> ClassificationOutcome:
        ...


class ResultSink(Protocol):
    def accept(self, record: AnalysisRecord) -> None:
        ...


class ListSink:
    """In-memory result sink."""

    def __init__(self):
        self.records: List[AnalysisRecord] = []

    def accept(self, record: AnalysisRecord) -> None:
        self.records.append(record)


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


def _as_source(source: Source) -> Union[EncodedImage, ImageSource]:
    if isinstance(source, (str, Path)):
        return ImageSource(SourceKind.FILE, Path(source))
    return source


class IdentifyPipeline:
    """
    Sequential identification orchestrator.

    Attributes:
        classifier: Classification client
        resolver: Geolocation resolver
        sink: Receives each AnalysisRecord as soon as it is built
        on_progress: Called with (index, total) before each item starts
        on_error: Called with (index, error) for each failed item in batch mode
        on_tick: Called with the running item's elapsed seconds every tick_ms
    """

    def __init__(
        self,
        classifier: Classifier,
        resolver: GeolocationResolver,
        sink: ResultSink,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_error: Optional[Callable[[int, IdentifyError], None]] = None,
        on_tick: Optional[Callable[[float], None]] = None,
        geolocation_timeout_ms: Optional[int] = None,
        tick_ms: Optional[int] = None,
    ):
        self.classifier = classifier
        self.resolver = resolver
        self.sink = sink
        self.on_progress = on_progress
        self.on_error = on_error
        self.on_tick = on_tick
        self.geolocation_timeout_ms = (
            CONFIG.geolocation_timeout_ms if geolocation_timeout_ms is None else geolocation_timeout_ms
        )
        self.tick_ms = CONFIG.tick_ms if tick_ms is None else tick_ms

        self.state = PipelineState.IDLE
        self.position: Optional[Tuple[int, int]] = None
        self._item_timer: Optional[Timer] = None

    @property
    def current_elapsed(self) -> float:
        """Elapsed seconds of the item in flight (0.0 when idle)."""
        if self._item_timer is None:
            return 0.0
        return self._item_timer.elapsed_seconds

    async def run(
        self,
        sources: Iterable[Source],
        profiles: Sequence[ReferenceProfile],
        continue_on_error: bool,
    ) -> AsyncIterator[ItemResult]:
        """
        Identify each source in order.

        Args:
            sources: Images or capture sources, processed in order
            profiles: Reference profiles; copied once and never mutated
            continue_on_error: True for batches, False for a single image

        Yields:
            One ItemResult per attempted item

        Raises:
            ClassificationError: EMPTY_DATABASE before the first item
            IdentifyError: The item's error when continue_on_error is False
            RuntimeError: If the pipeline is already running
        """
        if self.state is PipelineState.RUNNING:
            raise RuntimeError("pipeline is already running; start a new run once it finishes")

        snapshot = tuple(profiles)
        if not snapshot:
            raise ClassificationError(
                ErrorKind.EMPTY_DATABASE,
                "training database is empty; add plant profiles first"
            )

        items = [_as_source(s) for s in sources]
        total = len(items)
        logger = get_logger()

        self.state = PipelineState.RUNNING
        try:
            for index, source in enumerate(items, 1):
                self.position = (index, total)
                if self.on_progress:
                    self.on_progress(index, total)

                name = source.name
                with Timer("item") as item_timer:
                    try:
                        record = await self._process_item(source, snapshot)
                    except IdentifyError as e:
                        error = e
                        record = None

                if record is None:
                    logger.log_item(
                        image=name, index=index, total=total,
                        duration_ms=item_timer.duration_ms,
                        error=f"{type(error).__name__}: {error}"
                    )
                    if isinstance(error, ClassificationError) and error.is_fatal_to_run:
                        raise error
                    if not continue_on_error:
                        raise error
                    if self.on_error:
                        self.on_error(index, error)
                    yield ItemResult(index=index, total=total, name=name, error=error)
                    continue

                self.sink.accept(record)
                logger.log_item(
                    image=name, index=index, total=total,
                    duration_ms=item_timer.duration_ms,
                    details={
                        "matched_profile_id": record.matched_profile_id,
                        "confidence": record.confidence,
                        "elapsed_seconds": round(record.elapsed_seconds, 3),
                        "located": record.coordinates is not None,
                    }
                )
                yield ItemResult(index=index, total=total, name=name, record=record)
        finally:
            self.state = PipelineState.IDLE
            self.position = None
            self._item_timer = None

    async def run_all(
        self,
        sources: Iterable[Source],
        profiles: Sequence[ReferenceProfile],
        continue_on_error: bool,
    ) -> RunSummary:
        """Drive run() to completion and summarize it."""
        results: List[ItemResult] = []
        with Timer("run") as timer:
            async for result in self.run(sources, profiles, continue_on_error):
                results.append(result)
        return make_summary(results, timer.duration_ms)

    async def _process_item(
        self,
        source: Union[EncodedImage, ImageSource],
        snapshot: Tuple[ReferenceProfile, ...],
    ) -> AnalysisRecord:
        if isinstance(source, EncodedImage):
            image = source
        else:
            image = await asyncio.to_thread(source.capture)

        timer = Timer(image.name)
        self._item_timer = timer
        with timer:
            ticker = self._start_ticker(timer)
            try:
                coords, outcome = await asyncio.gather(
                    self.resolver.resolve(self.geolocation_timeout_ms),
                    self.classifier.classify(image, snapshot),
                    return_exceptions=True,
                )
            finally:
                if ticker is not None:
                    ticker.cancel()
                self._item_timer = None

        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(coords, BaseException):
            log.warning("Geolocation resolver raised %s; recording without coordinates", type(coords).__name__)
            coords = None

        return AnalysisRecord(
            outcome=outcome,
            elapsed_seconds=timer.duration_ms / 1000,
            coordinates=coords if isinstance(coords, Coordinates) else None,
            source_image=image.data_url(),
            source_name=image.name,
        )

    def _start_ticker(self, timer: Timer) -> Optional["asyncio.Task"]:
        if self.on_tick is None or self.tick_ms <= 0:
            return None

        async def tick():
            while True:
                await asyncio.sleep(self.tick_ms / 1000)
                self.on_tick(timer.elapsed_seconds)

        return asyncio.create_task(tick())
