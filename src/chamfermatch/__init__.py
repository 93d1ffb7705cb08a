"""
Chamfer-distance shape matching for locating template shapes in images.
"""

from .exceptions import ChamferError, ConfigurationError, TemplateStoreError
from .matching.detections import Detection
from .matching.engine import ChamferMatcher, DetectionOptions
from .matching.cost import MatchingType
from .matching.search import RejectionType, SearchStrategy

__all__ = [
    "ChamferError",
    "ChamferMatcher",
    "ConfigurationError",
    "Detection",
    "DetectionOptions",
    "MatchingType",
    "RejectionType",
    "SearchStrategy",
    "TemplateStoreError",
]
