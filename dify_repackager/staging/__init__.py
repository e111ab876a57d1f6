"""Artifact staging for container execution."""

from .helpers import ScriptNotFound, find_helper_binary, find_script, helper_binary_name
from .naming import OutputPattern, output_pattern, sanitize_filename
from .stager import ArtifactStager, OutputArtifact, StagedArtifact

__all__ = [
    "ArtifactStager",
    "OutputArtifact",
    "OutputPattern",
    "ScriptNotFound",
    "StagedArtifact",
    "find_helper_binary",
    "find_script",
    "helper_binary_name",
    "output_pattern",
    "sanitize_filename",
]
