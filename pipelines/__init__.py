"""
Identification pipeline for FloraMatch.

- identify_pipeline: sequential batch orchestrator (capture -> geolocate +
  classify -> record -> sink)
- output: per-item results and run summaries
"""

from pipelines.identify_pipeline import IdentifyPipeline, ListSink, PipelineState
from pipelines.output import ItemResult, RunSummary, make_summary

__all__ = [
    "IdentifyPipeline",
    "ListSink",
    "PipelineState",
    "ItemResult",
    "RunSummary",
    "make_summary",
]
