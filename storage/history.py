"""
Identification history using a local JSON file.
Receives records from the pipeline and owns the user flags, deletion and CSV export.
"""

import csv
import json
from pathlib import Path
from datetime import datetime
from typing import Iterable, List, Optional

from config import CONFIG
from models.analysis_record import AnalysisRecord

CSV_HEADERS = [
    "ID", "Name", "Scientific Name", "Invasive", "Confidence",
    "Analysis Time (s)", "Lat", "Lng", "Timestamp", "Favorite", "Incorrect",
]


class HistoryStorage:
    """
    Persistent history of AnalysisRecords, newest first.

    Implements the pipeline's result sink through accept().

    Attributes:
        filepath: Path to the JSON history file
    """

    def __init__(self, filepath: Optional[Path] = None):
        """
        Initialize history storage.

        Args:
            filepath: Path to history JSON file
        """
        self.filepath = Path(filepath) if filepath else CONFIG.history_file
        self._ensure_file_exists()

    def _ensure_file_exists(self):
        """Create data directory and file if they don't exist."""
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._save_data({"version": "1.0", "updated_at": None, "records": []})

    def _load_data(self) -> dict:
        with open(self.filepath, "r") as f:
            return json.load(f)

    def _save_data(self, data: dict):
        data["updated_at"] = datetime.now().isoformat()
        with open(self.filepath, "w") as f:
            json.dump(data, f, indent=2)

    def accept(self, record: AnalysisRecord) -> None:
        """
        Store one freshly produced record at the top of the history.

        Args:
            record: Record handed over by the pipeline
        """
        data = self._load_data()
        data["records"].insert(0, record.to_dict())
        self._save_data(data)

    def get_all(self) -> List[AnalysisRecord]:
        """Retrieve all records, newest first."""
        data = self._load_data()
        return [AnalysisRecord.from_dict(r) for r in data["records"]]

    def get_by_id(self, record_id: str) -> Optional[AnalysisRecord]:
        for record in self.get_all():
            if record.id == record_id:
                return record
        return None

    def _set_flag(self, record_ids: Iterable[str], flag: str, value: bool) -> int:
        wanted = set(record_ids)
        data = self._load_data()
        changed = 0
        for record in data["records"]:
            if record["id"] in wanted:
                record[flag] = value
                changed += 1
        if changed:
            self._save_data(data)
        return changed

    def set_favorite(self, record_ids: Iterable[str], value: bool = True) -> int:
        """
        Mark or unmark records as favorites.

        Returns:
            Number of records changed
        """
        return self._set_flag(record_ids, "is_favorite", value)

    def set_incorrect(self, record_ids: Iterable[str], value: bool = True) -> int:
        """
        Mark or unmark records as incorrect identifications.

        Returns:
            Number of records changed
        """
        return self._set_flag(record_ids, "is_incorrect", value)

    def remove(self, record_id: str) -> bool:
        """
        Remove a record from history.

        Returns:
            True if the record was removed, False if not found
        """
        return self.remove_many([record_id]) == 1

    def remove_many(self, record_ids: Iterable[str]) -> int:
        """Remove several records; returns how many were removed."""
        wanted = set(record_ids)
        data = self._load_data()
        original_len = len(data["records"])
        data["records"] = [r for r in data["records"] if r["id"] not in wanted]
        removed = original_len - len(data["records"])
        if removed:
            self._save_data(data)
        return removed

    def clear(self):
        """Remove all records from history."""
        self._save_data({"version": "1.0", "updated_at": None, "records": []})

    def export_csv(self, path: Path, record_ids: Optional[Iterable[str]] = None) -> int:
        """
        Write records to a CSV file.

        Args:
            path: Destination file
            record_ids: Only export these records (all when None)

        Returns:
            Number of rows written
        """
        records = self.get_all()
        if record_ids is not None:
            wanted = set(record_ids)
            records = [r for r in records if r.id in wanted]

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADERS)
            for r in records:
                writer.writerow([
                    r.id,
                    r.matched_name,
                    r.scientific_name,
                    "Yes" if r.is_invasive else "No",
                    f"{r.confidence * 100:.1f}%",
                    f"{r.elapsed_seconds:.2f}",
                    r.coordinates.lat if r.coordinates else "",
                    r.coordinates.lng if r.coordinates else "",
                    r.captured_at.isoformat(),
                    "Yes" if r.is_favorite else "No",
                    "Yes" if r.is_incorrect else "No",
                ])
        return len(records)
