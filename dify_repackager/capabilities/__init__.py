"""Host capability detection.

Provides the ProbeSet of read-only host probes and the CapabilityReport
built from them on every request.
"""

from .probes import ProbeResult, ProbeSet, is_inside_container
from .report import CapabilityReport, derive_recommendation, detect_capabilities

__all__ = [
    "CapabilityReport",
    "ProbeResult",
    "ProbeSet",
    "derive_recommendation",
    "detect_capabilities",
    "is_inside_container",
]
