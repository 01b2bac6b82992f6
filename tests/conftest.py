"""Shared fixtures and fakes for the FloraMatch tests."""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, List, Optional

import numpy as np
import pytest

import config
from clients.image_source import EncodedImage
from models.analysis_record import ClassificationOutcome, NO_MATCH_NAME, UNKNOWN_PROFILE_ID
from models.plant_profile import ReferenceProfile


@pytest.fixture(autouse=True)
def run_logger(tmp_path):
    """Send the JSONL run log to a temp directory."""
    logger = config.RunLogger(log_dir=str(tmp_path / "logs"))
    config.set_logger(logger)
    yield logger
    config.set_logger(None)


@pytest.fixture()
def profiles() -> List[ReferenceProfile]:
    return [
        ReferenceProfile(
            id="knotweed",
            common_name="Japanese Knotweed",
            scientific_name="Reynoutria japonica",
            is_invasive=True,
            sample_images=["aGVsbG8=", "d29ybGQ="],
        ),
        ReferenceProfile(
            id="foxglove",
            common_name="Foxglove",
            scientific_name="Digitalis purpurea",
            is_invasive=False,
            sample_images=["Zm94"],
        ),
    ]


@pytest.fixture()
def image() -> EncodedImage:
    return EncodedImage.from_bytes(b"\xff\xd8\xff\xe0fake-jpeg", name="leaf.jpg")


def payload(**overrides) -> dict:
    body = {
        "matchedName": "Japanese Knotweed",
        "scientificName": "Reynoutria japonica",
        "isInvasive": True,
        "confidence": 0.92,
        "explanation": "Heart-shaped leaves on zig-zag stems.",
        "matchedProfileId": "knotweed",
    }
    body.update(overrides)
    return body


def no_match_payload(confidence: float = 1.0) -> dict:
    return payload(
        matchedName=NO_MATCH_NAME,
        scientificName="N/A",
        isInvasive=False,
        confidence=confidence,
        explanation="Palmate leaves; nothing like any profile.",
        matchedProfileId=UNKNOWN_PROFILE_ID,
    )


class FakeCompletions:
    """Stands in for AsyncOpenAI().chat.completions."""

    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls: List[dict] = []

    async def create(self, **kwargs) -> Any:
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, completions: FakeCompletions):
        self.chat = SimpleNamespace(completions=completions)


def fake_openai(body=None, raw: Optional[str] = None, **kwargs) -> FakeOpenAI:
    content = raw if raw is not None else json.dumps(body if body is not None else payload())
    return FakeOpenAI(FakeCompletions(content=content, **kwargs))


def outcome(profile_id: str = "knotweed", confidence: float = 0.9) -> ClassificationOutcome:
    if profile_id == UNKNOWN_PROFILE_ID:
        return ClassificationOutcome(
            matched_name=NO_MATCH_NAME,
            scientific_name="N/A",
            is_invasive=False,
            confidence=confidence,
            explanation="No profile fits.",
            matched_profile_id=UNKNOWN_PROFILE_ID,
        )
    return ClassificationOutcome(
        matched_name="Japanese Knotweed",
        scientific_name="Reynoutria japonica",
        is_invasive=True,
        confidence=confidence,
        explanation="Zig-zag stems.",
        matched_profile_id=profile_id,
    )


class FakeDevice:
    """Counts open hardware streams across every handle it hands out."""

    def __init__(self, opens: bool = True, frame=None):
        self.opens = opens
        self.frame = frame if frame is not None else np.zeros((480, 640, 3), dtype=np.uint8)
        self.active = 0
        self.max_active = 0
        self.opened_total = 0

    def __call__(self, index: int) -> "FakeStream":
        return FakeStream(self)


class FakeStream:
    def __init__(self, device: FakeDevice):
        self.device = device
        self.released = False
        if device.opens:
            device.active += 1
            device.opened_total += 1
            device.max_active = max(device.max_active, device.active)

    def isOpened(self) -> bool:
        return self.device.opens

    def read(self):
        return True, self.device.frame

    def release(self):
        if not self.released and self.device.opens:
            self.device.active -= 1
        self.released = True
