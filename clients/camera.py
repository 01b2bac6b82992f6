"""
Camera capture for FloraMatch.

The hardware stream is an explicit resource: acquire() opens it, release()
stops it. SourceSession ties the camera to the selected capture mode so the
stream is released whenever the user leaves camera mode or the session ends.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

import cv2
import numpy as np

from clients.errors import CaptureError
from clients.image_source import EncodedImage, SourceKind
from config import CONFIG

log = logging.getLogger(__name__)


class CameraSource:
    """
    OpenCV camera stream with an explicit acquire/release lifecycle.

    At most one stream is open per instance: acquire() on an open source is a
    no-op, release() on a closed one is a no-op.
    """

    def __init__(
        self,
        device_index: Optional[int] = None,
        opener: Optional[Callable[[int], Any]] = None
    ):
        self.device_index = CONFIG.camera_index if device_index is None else device_index
        self._opener = opener or cv2.VideoCapture
        self._stream: Any = None

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    def acquire(self) -> "CameraSource":
        """
        Open the camera stream.

        Raises:
            CaptureError: If the device cannot be opened
        """
        if self._stream is not None:
            return self
        stream = self._opener(self.device_index)
        if not stream.isOpened():
            stream.release()
            raise CaptureError("device unavailable", f"camera {self.device_index}")
        self._stream = stream
        log.debug("Camera %s acquired", self.device_index)
        return self

    def release(self):
        """Stop the camera stream if one is open."""
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.release()
        log.debug("Camera %s released", self.device_index)

    def grab(self) -> EncodedImage:
        """
        Grab the current frame at native resolution as a JPEG.

        Raises:
            CaptureError: If the stream was never acquired, was released, or
                produced no frame
        """
        if self._stream is None:
            raise CaptureError("device unavailable")
        ok, frame = self._stream.read()
        if not ok or frame is None:
            raise CaptureError("device unavailable", "no frame")
        return encode_frame(frame)

    def __enter__(self) -> "CameraSource":
        return self.acquire()

    def __exit__(self, *args):
        self.release()


def encode_frame(frame: np.ndarray, name: Optional[str] = None) -> EncodedImage:
    """Encode a BGR frame as JPEG without resizing."""
    ok, buffer = cv2.imencode(".jpg", frame)
    if not ok:
        raise CaptureError("frame encoding failed")
    name = name or f"camera_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.jpg"
    return EncodedImage.from_bytes(buffer.tobytes(), name=name, mime_type="image/jpeg")


class SourceSession:
    """
    Tracks the selected capture mode and owns the camera for its lifetime.

    Entering camera mode acquires the camera; switching to any other mode,
    close(), or leaving the with-block releases it.
    """

    def __init__(self, camera: Optional[CameraSource] = None):
        self.camera = camera or CameraSource()
        self.mode: Optional[SourceKind] = None

    def switch_mode(self, kind: SourceKind):
        """
        Change capture mode, acquiring or releasing the camera as needed.

        Raises:
            CaptureError: If camera mode is selected and the device is unavailable
        """
        if kind is not SourceKind.CAMERA:
            self.camera.release()
            self.mode = kind
            return
        self.mode = kind
        try:
            self.camera.acquire()
        except CaptureError:
            self.camera.release()
            raise

    def close(self):
        self.camera.release()
        self.mode = None

    def __enter__(self) -> "SourceSession":
        return self

    def __exit__(self, *args):
        self.close()
