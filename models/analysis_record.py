"""
Identification result data models for FloraMatch.

ClassificationOutcome is the classifier's validated answer; AnalysisRecord is
the finalized identification event handed to history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import uuid

# Sentinels the classifier must use when the specimen matches no profile
NO_MATCH_NAME = "no match"
UNKNOWN_PROFILE_ID = "unknown"


@dataclass(frozen=True)
class Coordinates:
    """Device coordinates in decimal degrees."""
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class ClassificationOutcome:
    """
    Structured answer from the classification service.

    Attributes:
        matched_name: Common name of the matched profile, or NO_MATCH_NAME
        scientific_name: Scientific name from the matched profile
        is_invasive: Invasive flag from the matched profile
        confidence: Float in [0, 1]. For a match, confidence in the match.
            When matched_profile_id is UNKNOWN_PROFILE_ID, confidence that the
            specimen is ABSENT from the reference set. A no-match outcome with
            confidence 1.0 means "certainly not any known profile".
        explanation: Reasoning for the identification or for the rejection
        matched_profile_id: Profile id, or UNKNOWN_PROFILE_ID
    """

    matched_name: str
    scientific_name: str
    is_invasive: bool
    confidence: float
    explanation: str
    matched_profile_id: str = UNKNOWN_PROFILE_ID

    @property
    def is_match(self) -> bool:
        return self.matched_profile_id != UNKNOWN_PROFILE_ID

    @property
    def absence_confidence(self) -> Optional[float]:
        """Confidence the specimen is not in the reference set (no-match only)."""
        return None if self.is_match else self.confidence

    @property
    def match_confidence(self) -> Optional[float]:
        """Confidence in the matched profile (match only)."""
        return self.confidence if self.is_match else None

    def to_dict(self) -> dict:
        return {
            "matched_name": self.matched_name,
            "scientific_name": self.scientific_name,
            "is_invasive": self.is_invasive,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "matched_profile_id": self.matched_profile_id,
        }


@dataclass
class AnalysisRecord:
    """
    One finalized identification event.

    Immutable after creation apart from is_favorite and is_incorrect, which
    only the history store toggles.

    Attributes:
        id: Unique identifier for the record
        outcome: Validated classification outcome
        captured_at: When the item finished processing
        elapsed_seconds: Wall-clock item time including the geolocation wait
        coordinates: Resolved device coordinates, if any
        source_image: Data URL of the analysed image
        source_name: File name or capture label of the image
        is_favorite: User flag
        is_incorrect: User flag
    """

    outcome: ClassificationOutcome
    elapsed_seconds: float
    source_image: str
    source_name: str = ""
    coordinates: Optional[Coordinates] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    captured_at: datetime = field(default_factory=datetime.now)
    is_favorite: bool = False
    is_incorrect: bool = False

    @property
    def matched_name(self) -> str:
        return self.outcome.matched_name

    @property
    def scientific_name(self) -> str:
        return self.outcome.scientific_name

    @property
    def is_invasive(self) -> bool:
        return self.outcome.is_invasive

    @property
    def confidence(self) -> float:
        return self.outcome.confidence

    @property
    def explanation(self) -> str:
        return self.outcome.explanation

    @property
    def matched_profile_id(self) -> str:
        return self.outcome.matched_profile_id

    @property
    def is_match(self) -> bool:
        return self.outcome.is_match

    def to_dict(self) -> dict:
        """
        Convert AnalysisRecord to dictionary for JSON serialization.

        Returns:
            Flat dictionary representation of the record
        """
        data = {"id": self.id}
        data.update(self.outcome.to_dict())
        data.update({
            "captured_at": self.captured_at.isoformat(),
            "elapsed_seconds": self.elapsed_seconds,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "source_image": self.source_image,
            "source_name": self.source_name,
            "is_favorite": self.is_favorite,
            "is_incorrect": self.is_incorrect,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisRecord":
        """
        Create AnalysisRecord instance from dictionary.

        Args:
            data: Dictionary produced by to_dict()

        Returns:
            New AnalysisRecord instance
        """
        coords = data.get("coordinates")
        return cls(
            id=data["id"],
            outcome=ClassificationOutcome(
                matched_name=data["matched_name"],
                scientific_name=data.get("scientific_name", ""),
                is_invasive=data.get("is_invasive", False),
                confidence=data.get("confidence", 0.0),
                explanation=data.get("explanation", ""),
                matched_profile_id=data.get("matched_profile_id", UNKNOWN_PROFILE_ID),
            ),
            captured_at=datetime.fromisoformat(data["captured_at"]) if data.get("captured_at") else datetime.now(),
            elapsed_seconds=data.get("elapsed_seconds", 0.0),
            coordinates=Coordinates(lat=coords["lat"], lng=coords["lng"]) if coords else None,
            source_image=data.get("source_image", ""),
            source_name=data.get("source_name", ""),
            is_favorite=data.get("is_favorite", False),
            is_incorrect=data.get("is_incorrect", False),
        )
