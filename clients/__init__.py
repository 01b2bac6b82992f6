"""
External integration clients for FloraMatch.

Contains:
- ClassificationClient: OpenAI Vision client constrained to reference profiles
- GeolocationResolver: time-bounded, best-effort device location
- CameraSource: camera stream with explicit acquire/release
- capture / EncodedImage: image source adapter for files, folders and camera
"""

from clients.errors import CaptureError, ClassificationError, ErrorKind
from clients.image_source import EncodedImage, ImageSource, SourceKind, capture
from clients.location_client import GeolocationResolver, IPLocationProvider
from clients.llm_client import ClassificationClient
from clients.camera import CameraSource, SourceSession

__all__ = [
    "CaptureError",
    "ClassificationError",
    "ErrorKind",
    "EncodedImage",
    "ImageSource",
    "SourceKind",
    "capture",
    "GeolocationResolver",
    "IPLocationProvider",
    "ClassificationClient",
    "CameraSource",
    "SourceSession",
]
