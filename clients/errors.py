"""
Error taxonomy for FloraMatch.

- CaptureError: an image could not be produced (file, folder, camera, video).
  Fatal to the current item only.
- ClassificationError: the classifier could not produce a valid outcome.
  EMPTY_DATABASE is fatal to the whole run; the other kinds to the item.
"""

from enum import Enum


class IdentifyError(Exception):
    """Base class for identification errors."""


class CaptureError(IdentifyError):
    """Image source unavailable (device, permission or file)."""

    def __init__(self, reason: str, source: str = ""):
        self.reason = reason
        self.source = source
        message = f"{reason}: {source}" if source else reason
        super().__init__(message)


class ErrorKind(str, Enum):
    EMPTY_DATABASE = "empty_database"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSPORT = "transport"


class ClassificationError(IdentifyError):
    """Classifier failure, tagged with an ErrorKind."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def is_fatal_to_run(self) -> bool:
        return self.kind is ErrorKind.EMPTY_DATABASE
