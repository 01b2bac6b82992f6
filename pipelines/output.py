"""
Shared output shapes for identification runs.

ItemResult is what the pipeline yields per item; RunSummary is the JSON-able
digest of a whole run used by the console and the run log.
"""

from dataclasses import dataclass
from typing import List, Optional, TypedDict

from clients.errors import IdentifyError
from models.analysis_record import AnalysisRecord


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one item: exactly one of record / error is set."""
    index: int  # 1-based position in the run
    total: int
    name: str
    record: Optional[AnalysisRecord] = None
    error: Optional[IdentifyError] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


class ItemError(TypedDict):
    """One failed item in a run summary."""
    index: int
    image: str
    error: str


class RunSummary(TypedDict):
    """Digest of a finished run."""
    attempted: int
    succeeded: int
    failed: int
    runtime_ms: float
    records: List[AnalysisRecord]
    errors: List[ItemError]


def make_summary(results: List[ItemResult], runtime_ms: float) -> RunSummary:
    """
    Build a RunSummary from the yielded item results.

    Args:
        results: Every ItemResult yielded by the run, in order
        runtime_ms: Wall-clock time for the whole run

    Returns:
        RunSummary dict
    """
    records = [r.record for r in results if r.record is not None]
    errors: List[ItemError] = [
        {"index": r.index, "image": r.name, "error": str(r.error)}
        for r in results if r.error is not None
    ]
    return {
        "attempted": len(results),
        "succeeded": len(records),
        "failed": len(errors),
        "runtime_ms": round(runtime_ms, 2),
        "records": records,
        "errors": errors,
    }
