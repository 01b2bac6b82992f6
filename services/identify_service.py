"""
Identify service orchestrator.
Wires the training database, history, classifier and geolocation into one pipeline.
"""

from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from clients.camera import SourceSession
from clients.errors import IdentifyError
from clients.image_source import ImageSource, SourceKind, folder_sources
from clients.llm_client import get_llm_client
from clients.location_client import GeolocationResolver, get_default_resolver
from pipelines.identify_pipeline import Classifier, IdentifyPipeline, ResultSink
from pipelines.output import RunSummary
from storage.history import HistoryStorage
from storage.profiles import ProfileStorage


class IdentifyService:
    """
    Runs identifications against the stored profiles and saves results to history.

    Attributes:
        profiles: Training database
        history: Result sink
        classifier: Classification client
        resolver: Geolocation resolver
    """

    def __init__(
        self,
        profiles: Optional[ProfileStorage] = None,
        history: Optional[ResultSink] = None,
        classifier: Optional[Classifier] = None,
        resolver: Optional[GeolocationResolver] = None,
    ):
        self.profiles = profiles or ProfileStorage()
        self.history = history or HistoryStorage()
        self._classifier = classifier
        self.resolver = resolver or get_default_resolver()

    @property
    def classifier(self) -> Classifier:
        if self._classifier is None:
            self._classifier = get_llm_client()
        return self._classifier

    def build_pipeline(
        self,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_error: Optional[Callable[[int, IdentifyError], None]] = None,
        on_tick: Optional[Callable[[float], None]] = None,
    ) -> IdentifyPipeline:
        return IdentifyPipeline(
            classifier=self.classifier,
            resolver=self.resolver,
            sink=self.history,
            on_progress=on_progress,
            on_error=on_error,
            on_tick=on_tick,
        )

    async def identify(self, sources: Sequence[ImageSource], **callbacks) -> RunSummary:
        """
        Identify one or more sources against the current profile snapshot.

        A single source runs fail-fast; several sources run continue-on-error.

        Raises:
            IdentifyError: In single-image mode, or EMPTY_DATABASE in any mode
        """
        pipeline = self.build_pipeline(**callbacks)
        return await pipeline.run_all(
            sources,
            self.profiles.snapshot(),
            continue_on_error=len(sources) > 1,
        )

    async def identify_file(self, image_path: Union[str, Path], **callbacks) -> RunSummary:
        return await self.identify([ImageSource(SourceKind.FILE, Path(image_path))], **callbacks)

    async def identify_folder(self, folder: Union[str, Path], **callbacks) -> RunSummary:
        """Identify every image in a folder."""
        sources: List[ImageSource] = folder_sources(folder)
        return await self.identify(sources, **callbacks)

    async def identify_camera(self, session: SourceSession, **callbacks) -> RunSummary:
        """
        Grab one frame from the session's camera and identify it.

        The caller owns the session; it stays in camera mode afterwards.
        """
        session.switch_mode(SourceKind.CAMERA)
        return await self.identify([ImageSource(SourceKind.CAMERA, session.camera)], **callbacks)
