"""
Request pipeline — versioned routing of documents to analysis backends.

This package resolves the backend version for a caller, applies option
policy, invokes the backend, keeps an auditable ProcessingSession of the
whole exchange and builds the caller's filtered view of the result.
"""

from gateway.pipeline.processor import AnalysisProcessor, ProcessingOutcome
from gateway.pipeline.session import ProcessingSession
from gateway.pipeline.models import Submission, User, VersionRegistry

__all__ = [
    "AnalysisProcessor",
    "ProcessingOutcome",
    "ProcessingSession",
    "Submission",
    "User",
    "VersionRegistry",
]
