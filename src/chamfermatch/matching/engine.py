from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Tuple, Union

import numpy as np

from ..exceptions import ConfigurationError
from ..io.template_store import PathLike
from .cost import CostFunction, MatchingType, make_cost_function
from .detections import (
    Detection,
    extract_detections,
    group_detections,
    non_maxima_suppression,
    sort_detections,
)
from .search import RejectionType, SearchParameters, SearchStrategy, compute_cost_map
from .shape_info import ShapeInfo, ShapeInfoBuilder
from .templates import TemplateRegions, TemplateStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DetectionOptions:
    """
    Per-call knobs of ``ChamferMatcher.detect`` and ``detect_multi_scale``.
    """

    use_orientation: bool = True
    distance_threshold: float = 50.0
    orientation_weight: float = 5.0
    weight_forward: float = 1.0
    weight_backward: float = 1.0
    group_detections: bool = False
    overlap_threshold: float = 0.5
    non_maxima_suppression: bool = False
    max_detections: int = 100

    def __post_init__(self) -> None:
        if self.orientation_weight < 0:
            raise ValueError("orientation_weight must be >= 0")
        if self.weight_forward < 0 or self.weight_backward < 0:
            raise ValueError("forward and backward weights must be >= 0")
        if not (0.0 <= self.overlap_threshold <= 1.0):
            raise ValueError("overlap_threshold must be between 0 and 1")
        if self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")


class ChamferMatcher:
    """
    Chamfer-distance shape matcher over a gallery of templates.
    """

    def __init__(
        self,
        canny_threshold: float = 50.0,
        matching_type: Union[MatchingType, str] = MatchingType.EDGE,
        strategy: Union[SearchStrategy, str] = SearchStrategy.TEMPLATE,
        rejection: Union[RejectionType, str] = RejectionType.GRID_DESCRIPTOR,
        max_descriptor_distance_error: float = 10.0,
        max_descriptor_orientation_error: float = 0.35,
        min_descriptor_matches: int = 5,
        grid_descriptor_size: Tuple[int, int] = (4, 4),
        search_step: Tuple[int, int] = (5, 5),
        scale_min: float = 0.5,
        scale_max: float = 2.0,
        scale_step: float = 0.1,
        min_contour_points: int = 2,
        approx_epsilon: float = 3.0,
        workers: int = 1,
    ) -> None:
        self.matching_type = MatchingType(matching_type)
        self.builder = ShapeInfoBuilder(
            canny_threshold=canny_threshold,
            min_contour_points=min_contour_points,
            approx_epsilon=approx_epsilon,
            grid_size=grid_descriptor_size,
        )
        self.search = SearchParameters(
            step=search_step,
            strategy=strategy,
            rejection=rejection,
            max_descriptor_distance_error=max_descriptor_distance_error,
            max_descriptor_orientation_error=max_descriptor_orientation_error,
            min_descriptor_matches=min_descriptor_matches,
            workers=workers,
        )
        self._store = TemplateStore(self.builder, scale_min, scale_max, scale_step)

    @property
    def store(self) -> TemplateStore:
        return self._store

    @property
    def template_ids(self) -> List[int]:
        return self._store.ids

    @property
    def scale_range(self) -> Tuple[float, float, float]:
        return self._store.scale_range

    def set_templates(
        self,
        images: Mapping[int, np.ndarray],
        regions: Mapping[int, TemplateRegions],
    ) -> None:
        """
        Replace the template gallery.

        ``regions[id]`` is ``(template_anchor, search_region)``, both
        ``(x, y, width, height)``. An empty search region searches everywhere.
        """
        self._store.set_templates(images, regions)

    def set_scale_range(self, scale_min: float, scale_max: float, scale_step: float) -> None:
        self._store.set_scale_range(scale_min, scale_max, scale_step)

    def save(self, path: PathLike) -> None:
        self._store.save(path)

    def load(self, path: PathLike) -> None:
        self._store.load(path)

    def prepare_query(self, image: np.ndarray) -> ShapeInfo:
        return self.builder.build(image)

    def cost_function(self, options: DetectionOptions) -> CostFunction:
        return make_cost_function(
            self.matching_type,
            use_orientation=options.use_orientation,
            orientation_weight=options.orientation_weight,
            weight_forward=options.weight_forward,
            weight_backward=options.weight_backward,
        )

    def detect(self, image: np.ndarray, options: DetectionOptions | None = None) -> List[Detection]:
        """
        Detect every template at its original scale, best matches first.
        """
        options = options or DetectionOptions()
        query = self.prepare_query(image)
        cost_function = self.cost_function(options)

        detections: List[Detection] = []
        for template_id in self._store.ids:
            found = self._detect_template(template_id, 1.0, self._store.shape(template_id), query, cost_function, options)
            if options.non_maxima_suppression:
                found = non_maxima_suppression(found)
            logger.debug("Template %d: %d detections", template_id, len(found))
            detections.extend(found)
        return sort_detections(detections)

    def detect_multi_scale(self, image: np.ndarray, options: DetectionOptions | None = None) -> List[Detection]:
        """
        Detect every template at every prepared scale, best matches first.
        """
        if self.search.strategy is SearchStrategy.TEMPLATE_POSE:
            raise ConfigurationError("Multi-scale detection is not available with the template pose strategy")

        options = options or DetectionOptions()
        query = self.prepare_query(image)
        cost_function = self.cost_function(options)

        detections: List[Detection] = []
        for template_id in self._store.ids:
            found: List[Detection] = []
            for scale, shape in self._store.shapes(template_id).items():
                found.extend(self._detect_template(template_id, scale, shape, query, cost_function, options))
            if options.non_maxima_suppression:
                found = non_maxima_suppression(found)
            logger.debug("Template %d: %d detections over all scales", template_id, len(found))
            detections.extend(found)
        return sort_detections(detections)

    def _detect_template(
        self,
        template_id: int,
        scale: float,
        template: ShapeInfo,
        query: ShapeInfo,
        cost_function: CostFunction,
        options: DetectionOptions,
    ) -> List[Detection]:
        cost_map = compute_cost_map(template, query, cost_function, self.search)
        if cost_map is None:
            return []

        detections = extract_detections(
            cost_map,
            template.size,
            scale,
            options.distance_threshold,
            max_iterations=options.max_detections,
            template_id=template_id,
        )
        if options.group_detections:
            detections = group_detections(detections, options.overlap_threshold)
        return sort_detections(detections)


__all__ = ["ChamferMatcher", "DetectionOptions"]
