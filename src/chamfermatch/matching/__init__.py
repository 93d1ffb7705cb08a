"""
Matching subpackage exposes the Chamfer matching pipeline and its facade.
"""

from .cost import MatchingType, angular_error, make_cost_function
from .detections import Detection, group_detections, non_maxima_suppression
from .engine import ChamferMatcher, DetectionOptions
from .search import RejectionType, SearchStrategy
from .shape_info import ShapeInfo, ShapeInfoBuilder
from .templates import TemplateStore

__all__ = [
    "ChamferMatcher",
    "Detection",
    "DetectionOptions",
    "MatchingType",
    "RejectionType",
    "SearchStrategy",
    "ShapeInfo",
    "ShapeInfoBuilder",
    "TemplateStore",
    "angular_error",
    "group_detections",
    "make_cost_function",
    "non_maxima_suppression",
]
