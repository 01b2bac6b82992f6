"""
Reference profile storage using a local JSON file.
The training database: the only place profiles are created, edited or deleted.
"""

import json
from pathlib import Path
from datetime import datetime
from typing import List, Optional, Tuple, Union

from clients.image_source import enumerate_folder, folder_label, read_image_file
from config import CONFIG
from models.plant_profile import ReferenceProfile


class ProfileStorage:
    """
    Manages persistent storage of reference profiles, newest first.

    Attributes:
        filepath: Path to the JSON profiles file
    """

    def __init__(self, filepath: Optional[Path] = None):
        self.filepath = Path(filepath) if filepath else CONFIG.profiles_file
        self._ensure_file_exists()

    def _ensure_file_exists(self):
        """Create data directory and file if they don't exist."""
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._save_data({"version": "1.0", "updated_at": None, "profiles": []})

    def _load_data(self) -> dict:
        with open(self.filepath, "r") as f:
            return json.load(f)

    def _save_data(self, data: dict):
        data["updated_at"] = datetime.now().isoformat()
        with open(self.filepath, "w") as f:
            json.dump(data, f, indent=2)

    def get_all(self) -> List[ReferenceProfile]:
        data = self._load_data()
        return [ReferenceProfile.from_dict(p) for p in data["profiles"]]

    def snapshot(self) -> Tuple[ReferenceProfile, ...]:
        """Read-only copy of the current profiles for one identification run."""
        return tuple(self.get_all())

    def get_by_id(self, profile_id: str) -> Optional[ReferenceProfile]:
        for profile in self.get_all():
            if profile.id == profile_id:
                return profile
        return None

    def add(self, profile: ReferenceProfile) -> ReferenceProfile:
        """
        Add a profile to the top of the database.

        Raises:
            ValueError: If a profile with the same id already exists
        """
        data = self._load_data()
        if any(p["id"] == profile.id for p in data["profiles"]):
            raise ValueError(f"Profile id already exists: {profile.id}")
        data["profiles"].insert(0, profile.to_dict())
        self._save_data(data)
        return profile

    def update(self, profile_id: str, updates: dict) -> Optional[ReferenceProfile]:
        """
        Update an existing profile.

        Args:
            profile_id: ID of profile to update
            updates: Dictionary of fields to update (the id is never changed)

        Returns:
            Updated ReferenceProfile if found, None otherwise
        """
        updates = {k: v for k, v in updates.items() if k != "id"}
        data = self._load_data()
        for i, profile in enumerate(data["profiles"]):
            if profile["id"] == profile_id:
                data["profiles"][i].update(updates)
                self._save_data(data)
                return ReferenceProfile.from_dict(data["profiles"][i])
        return None

    def remove(self, profile_id: str) -> bool:
        data = self._load_data()
        original_len = len(data["profiles"])
        data["profiles"] = [p for p in data["profiles"] if p["id"] != profile_id]
        if len(data["profiles"]) < original_len:
            self._save_data(data)
            return True
        return False

    def clear(self):
        """Remove all profiles."""
        self._save_data({"version": "1.0", "updated_at": None, "profiles": []})


def profile_from_folder(
    folder: Union[str, Path],
    name: Optional[str] = None,
    scientific_name: str = "",
    is_invasive: bool = False,
    notes: str = ""
) -> ReferenceProfile:
    """
    Build a profile from every image in a folder.

    Args:
        folder: Folder of sample photos for one plant
        name: Common name (defaults to the folder label)
        scientific_name: Scientific name
        is_invasive: Invasive flag
        notes: Free-text notes

    Returns:
        New, unsaved ReferenceProfile

    Raises:
        CaptureError: If the folder is missing or a file is unreadable
    """
    folder = Path(folder)
    paths = enumerate_folder(folder)
    label = folder_label(paths, root=folder.parent)
    images = [read_image_file(p).data for p in paths]
    return ReferenceProfile(
        common_name=name or label,
        scientific_name=scientific_name,
        is_invasive=is_invasive,
        sample_images=images,
        notes=notes,
    )
