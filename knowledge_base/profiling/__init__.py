"""Acquisition, extraction, parsing and merging of profile data."""

from knowledge_base.profiling.extraction import ExtractionClient
from knowledge_base.profiling.merge import ProfileMerger, build_skill_index
from knowledge_base.profiling.output_parser import parse_profile_output, strip_code_fence
from knowledge_base.profiling.pdf_parser import PDFParser
from knowledge_base.profiling.profile_models import (
    PartialProfile,
    SourceRef,
    UnifiedProfile,
)

__all__ = [
    "ExtractionClient",
    "PDFParser",
    "PartialProfile",
    "ProfileMerger",
    "SourceRef",
    "UnifiedProfile",
    "build_skill_index",
    "parse_profile_output",
    "strip_code_fence",
]
