"""
Reference profile data model for FloraMatch.
A profile is one labelled plant the classifier is allowed to answer with.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List
import uuid


@dataclass
class ReferenceProfile:
    """
    Represents a labelled reference plant in the training database.

    Attributes:
        id: Stable identifier, unique within the database (caller-maintained)
        common_name: Common name (e.g., 'Japanese Knotweed')
        scientific_name: Scientific name (e.g., 'Reynoutria japonica')
        is_invasive: Whether the plant is flagged as invasive
        sample_images: Ordered base64-encoded sample images
        notes: Free-text notes
        created_at: Timestamp when the profile was created
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    common_name: str = ""
    scientific_name: str = ""
    is_invasive: bool = False
    sample_images: List[str] = field(default_factory=list)
    notes: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def sample_count(self) -> int:
        return len(self.sample_images)

    def manifest_entry(self) -> dict:
        """
        Image-free summary sent to the classifier.

        Returns:
            Dictionary with id, names, invasive flag and sample count only
        """
        return {
            "id": self.id,
            "commonName": self.common_name,
            "scientificName": self.scientific_name,
            "isInvasive": self.is_invasive,
            "sampleCount": self.sample_count,
        }

    def to_dict(self) -> dict:
        """
        Convert ReferenceProfile to dictionary for JSON serialization.

        Returns:
            Dictionary representation of the profile
        """
        return {
            "id": self.id,
            "common_name": self.common_name,
            "scientific_name": self.scientific_name,
            "is_invasive": self.is_invasive,
            "sample_images": list(self.sample_images),
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReferenceProfile":
        """
        Create ReferenceProfile instance from dictionary.

        Args:
            data: Dictionary containing profile data

        Returns:
            New ReferenceProfile instance
        """
        return cls(
            id=data.get("id", str(uuid.uuid4())[:8]),
            common_name=data["common_name"],
            scientific_name=data.get("scientific_name", ""),
            is_invasive=data.get("is_invasive", False),
            sample_images=list(data.get("sample_images", [])),
            notes=data.get("notes", ""),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now(),
        )
