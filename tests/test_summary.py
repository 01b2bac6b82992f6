"""Dashboard statistics over history records."""

from evaluation.summary import summarize_history
from models.analysis_record import AnalysisRecord, Coordinates, UNKNOWN_PROFILE_ID

from conftest import outcome


def record(profile_id="knotweed", confidence=0.8, elapsed=1.0, coords=None) -> AnalysisRecord:
    return AnalysisRecord(
        outcome=outcome(profile_id, confidence),
        elapsed_seconds=elapsed,
        source_image="",
        coordinates=coords,
    )


def test_empty_history():
    stats = summarize_history([])
    assert stats["total"] == 0
    assert stats["top_species"] == []


def test_counts_and_averages():
    records = [
        record(confidence=0.8, elapsed=1.0, coords=Coordinates(1.0, 2.0)),
        record(confidence=0.6, elapsed=3.0),
        record(UNKNOWN_PROFILE_ID, confidence=1.0, elapsed=2.0),
    ]

    stats = summarize_history(records)

    assert stats["total"] == 3
    assert stats["invasive_count"] == 2
    assert stats["unknown_count"] == 1
    assert stats["located_count"] == 1
    assert stats["avg_confidence_pct"] == 80.0
    assert stats["avg_elapsed_seconds"] == 2.0
    assert stats["top_species"] == [{"name": "Japanese Knotweed", "count": 2}]
