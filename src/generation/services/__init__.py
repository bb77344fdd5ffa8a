"""Generation service layer."""

from .novel_pipeline import NovelPipelineService
from .source_extraction import SourceExtractionService

__all__ = [
    "NovelPipelineService",
    "SourceExtractionService",
]
