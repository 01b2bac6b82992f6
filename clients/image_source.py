"""
Image source adapter for FloraMatch.

Turns a capture source (single file, folder entry, camera frame, video) into
one EncodedImage. File bytes are base64-encoded unchanged, so the payload sent
to the classifier is byte-for-byte the original file.

Video is a stub: selecting a video source raises CaptureError.
"""

import base64
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Union

from clients.errors import CaptureError

# Image extensions picked up when enumerating a folder
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".webp", ".gif", ".heic"}

# Label used when a folder listing carries no usable path prefix
DEFAULT_FOLDER_LABEL = "New Plant Species"


class SourceKind(str, Enum):
    FILE = "file"
    FOLDER_ITEM = "folder_item"
    CAMERA = "camera"
    VIDEO = "video"


@dataclass(frozen=True)
class EncodedImage:
    """
    A single image ready for the wire.

    Attributes:
        name: File name or capture label
        mime_type: MIME type of the original bytes
        data: Base64 text of the original bytes
        label: Advisory display label (folder name), not used by classification
    """
    name: str
    mime_type: str
    data: str
    label: Optional[str] = None

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    @classmethod
    def from_bytes(
        cls,
        raw: bytes,
        name: str,
        mime_type: str = "image/jpeg",
        label: Optional[str] = None
    ) -> "EncodedImage":
        return cls(
            name=name,
            mime_type=mime_type,
            data=base64.b64encode(raw).decode("ascii"),
            label=label,
        )


@dataclass(frozen=True)
class ImageSource:
    """
    A not-yet-captured image: the kind of device plus its handle.

    The handle is a path for FILE / FOLDER_ITEM / VIDEO and a CameraSource for
    CAMERA. Capture happens lazily inside the pipeline so that a failing
    source only fails its own item.
    """
    kind: SourceKind
    handle: object
    label: Optional[str] = None

    @property
    def name(self) -> str:
        if isinstance(self.handle, (str, Path)):
            return Path(self.handle).name
        return self.kind.value

    def capture(self) -> EncodedImage:
        return capture(self.kind, self.handle, label=self.label)


def guess_mime_type(path: Union[str, Path]) -> str:
    """Guess a MIME type from the file extension."""
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "application/octet-stream"


def read_image_file(path: Union[str, Path], label: Optional[str] = None) -> EncodedImage:
    """
    Read an image file and encode it without transcoding.

    Args:
        path: Path to the image file
        label: Optional advisory label

    Returns:
        EncodedImage holding the exact file bytes

    Raises:
        CaptureError: If the file is missing or unreadable
    """
    path = Path(path)
    if not path.is_file():
        raise CaptureError("file unavailable", str(path))
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise CaptureError(f"file unreadable ({e.strerror or e})", str(path)) from e
    return EncodedImage.from_bytes(raw, name=path.name, mime_type=guess_mime_type(path), label=label)


def enumerate_folder(folder: Union[str, Path]) -> List[Path]:
    """
    Find all image files in a folder, sorted by name (non-recursive).

    Raises:
        CaptureError: If the folder does not exist
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise CaptureError("folder unavailable", str(folder))
    return [
        f for f in sorted(folder.iterdir())
        if f.is_file() and f.suffix.lower() in IMAGE_EXTENSIONS
    ]


def folder_label(paths: Sequence[Union[str, Path]], root: Optional[Union[str, Path]] = None) -> str:
    """
    Derive the default display label for a folder listing.

    Uses the leading directory component of the first path (relative to
    root when given). Falls back to DEFAULT_FOLDER_LABEL.
    """
    if not paths:
        return DEFAULT_FOLDER_LABEL
    first = Path(paths[0])
    if root is not None:
        try:
            first = first.relative_to(root)
        except ValueError:
            pass
    parts = first.parts[:-1]
    if parts and parts[0] not in ("/", "\\") and parts[0].strip():
        return parts[0]
    if first.parent.name:
        return first.parent.name
    return DEFAULT_FOLDER_LABEL


def folder_sources(folder: Union[str, Path]) -> List[ImageSource]:
    """Build one FOLDER_ITEM source per image file in a folder."""
    folder = Path(folder)
    paths = enumerate_folder(folder)
    label = folder_label(paths, root=folder.parent)
    return [ImageSource(SourceKind.FOLDER_ITEM, p, label=label) for p in paths]


def capture(source_kind: SourceKind, source_handle: object, label: Optional[str] = None) -> EncodedImage:
    """
    Produce one encoded image from a capture source.

    Args:
        source_kind: Kind of source
        source_handle: Path for file-backed sources, CameraSource for camera
        label: Optional advisory label

    Returns:
        EncodedImage

    Raises:
        CaptureError: If the source cannot produce an image
    """
    if source_kind in (SourceKind.FILE, SourceKind.FOLDER_ITEM):
        if not isinstance(source_handle, (str, Path)):
            raise CaptureError("file handle must be a path", repr(source_handle))
        return read_image_file(source_handle, label=label)

    if source_kind is SourceKind.CAMERA:
        grab = getattr(source_handle, "grab", None)
        if grab is None:
            raise CaptureError("device unavailable")
        return grab()

    if source_kind is SourceKind.VIDEO:
        raise CaptureError("video sources are not supported", str(source_handle))

    raise CaptureError(f"unknown source kind {source_kind!r}")
