"""
History statistics for the dashboard view.

Averages are plain means over all records. Confidence is averaged as stored,
so no-match records contribute their absence confidence; unknown_count says
how many of those there are.
"""

from collections import Counter
from typing import Dict, List, Sequence

from models.analysis_record import AnalysisRecord


def summarize_history(records: Sequence[AnalysisRecord], top_n: int = 5) -> Dict:
    """
    Compute dashboard statistics.

    Args:
        records: History records (any order)
        top_n: Number of most-identified plants to report

    Returns:
        Dict with keys: total, invasive_count, unknown_count, located_count,
        avg_confidence_pct, avg_elapsed_seconds, top_species.
    """
    total = len(records)
    if total == 0:
        return {
            "total": 0,
            "invasive_count": 0,
            "unknown_count": 0,
            "located_count": 0,
            "avg_confidence_pct": 0.0,
            "avg_elapsed_seconds": 0.0,
            "top_species": [],
        }

    counts = Counter(r.matched_name for r in records if r.is_match)
    top_species: List[Dict] = [
        {"name": name, "count": count} for name, count in counts.most_common(top_n)
    ]

    return {
        "total": total,
        "invasive_count": sum(1 for r in records if r.is_invasive),
        "unknown_count": sum(1 for r in records if not r.is_match),
        "located_count": sum(1 for r in records if r.coordinates is not None),
        "avg_confidence_pct": round(sum(r.confidence for r in records) / total * 100, 1),
        "avg_elapsed_seconds": round(sum(r.elapsed_seconds for r in records) / total, 2),
        "top_species": top_species,
    }
