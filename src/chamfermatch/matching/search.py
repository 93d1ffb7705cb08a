from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple

import numpy as np

from .cost import CostFunction, angular_error
from .shape_info import ShapeInfo

logger = logging.getLogger(__name__)

Bounds = Tuple[int, int, int, int]


class SearchStrategy(str, Enum):
    """
    Where candidate offsets are taken from.

    ``TEMPLATE`` slides over the search region, ``TEMPLATE_POSE`` only checks
    the offset the template was originally extracted from.
    """

    TEMPLATE = "template"
    TEMPLATE_POSE = "template_pose"


class RejectionType(str, Enum):
    NONE = "none"
    GRID_DESCRIPTOR = "grid_descriptor"


@dataclass(slots=True)
class SearchParameters:
    """
    Settings shared by every cost-map computation of one matcher.
    """

    step: Tuple[int, int] = (5, 5)
    strategy: SearchStrategy = SearchStrategy.TEMPLATE
    rejection: RejectionType = RejectionType.GRID_DESCRIPTOR
    max_descriptor_distance_error: float = 10.0
    max_descriptor_orientation_error: float = 0.35
    min_descriptor_matches: int = 5
    workers: int = 1

    def __post_init__(self) -> None:
        if len(self.step) != 2 or self.step[0] < 1 or self.step[1] < 1:
            raise ValueError("step must hold two positive integers")
        if self.max_descriptor_distance_error <= 0:
            raise ValueError("max_descriptor_distance_error must be positive")
        if self.max_descriptor_orientation_error <= 0:
            raise ValueError("max_descriptor_orientation_error must be positive")
        if self.min_descriptor_matches < 0:
            raise ValueError("min_descriptor_matches must be >= 0")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        self.strategy = SearchStrategy(self.strategy)
        self.rejection = RejectionType(self.rejection)


def search_bounds(
    template: ShapeInfo,
    map_width: int,
    map_height: int,
    strategy: SearchStrategy = SearchStrategy.TEMPLATE,
) -> Bounds:
    """
    Offset range ``(x0, y0, x1, y1)``, end exclusive, clipped to the cost map.
    """
    if strategy is SearchStrategy.TEMPLATE_POSE:
        x0, y0 = template.template_anchor[0], template.template_anchor[1]
        x1, y1 = x0 + 1, y0 + 1
    else:
        region_x, region_y, region_width, region_height = template.search_region
        if region_width > 0 and region_height > 0:
            x0, y0 = region_x, region_y
            x1, y1 = region_x + region_width, region_y + region_height
        else:
            x0, y0, x1, y1 = 0, 0, map_width, map_height

    x0 = max(0, min(map_width, x0))
    x1 = max(0, min(map_width, x1))
    y0 = max(0, min(map_height, y0))
    y1 = max(0, min(map_height, y1))
    return x0, y0, x1, y1


def admission_mask(
    template: ShapeInfo,
    query: ShapeInfo,
    xs: np.ndarray,
    ys: np.ndarray,
    params: SearchParameters,
) -> np.ndarray:
    """
    Grid-descriptor pre-filter over the candidate offsets ``ys x xs``.

    An offset is admitted when at least ``min_descriptor_matches`` template
    descriptors agree with the query fields in both distance and orientation.
    """
    matches = np.zeros((len(ys), len(xs)), dtype=np.int32)
    for (dx, dy), (distance, orientation) in zip(template.grid_locations, template.grid_descriptors):
        rows = np.ix_(ys + dy, xs + dx)
        query_distance = query.distance_field[rows]
        query_orientation = query.orientation_field[rows]
        agree = np.abs(query_distance - distance) < params.max_descriptor_distance_error
        agree &= angular_error(query_orientation, orientation, symmetric=True) < params.max_descriptor_orientation_error
        matches += agree
    return matches >= params.min_descriptor_matches


def compute_cost_map(
    template: ShapeInfo,
    query: ShapeInfo,
    cost_function: CostFunction,
    params: SearchParameters | None = None,
) -> np.ndarray | None:
    """
    Cost of every visited template offset inside the query.

    The map has one cell per valid top-left offset. Cells that are not on the
    stride grid, outside the search bounds, or rejected by the admission filter
    stay at +inf. Returns None when the template does not fit in the query.
    """
    params = params or SearchParameters()
    map_width = query.width - template.width + 1
    map_height = query.height - template.height + 1
    if map_width <= 0 or map_height <= 0:
        logger.debug(
            "Template %dx%d does not fit in query %dx%d",
            template.width,
            template.height,
            query.width,
            query.height,
        )
        return None

    cost_map = np.full((map_height, map_width), np.inf, dtype=np.float32)

    x0, y0, x1, y1 = search_bounds(template, map_width, map_height, params.strategy)
    if x1 <= x0 or y1 <= y0:
        return cost_map

    step_x, step_y = params.step
    xs = np.arange(x0, x1, step_x)
    ys = np.arange(y0, y1, step_y)

    if params.rejection is RejectionType.GRID_DESCRIPTOR:
        admitted = admission_mask(template, query, xs, ys, params)
    else:
        admitted = np.ones((len(ys), len(xs)), dtype=bool)

    def evaluate_rows(row_indices: Iterable[int]) -> None:
        for row in row_indices:
            y = int(ys[row])
            for column in np.flatnonzero(admitted[row]):
                x = int(xs[column])
                cost_map[y, x] = cost_function.evaluate(template, query, (x, y))

    if params.workers > 1 and len(ys) > 1:
        chunks = np.array_split(np.arange(len(ys)), min(params.workers, len(ys)))
        with ThreadPoolExecutor(max_workers=params.workers) as executor:
            futures = [executor.submit(evaluate_rows, chunk) for chunk in chunks]
            for future in futures:
                future.result()
    else:
        evaluate_rows(range(len(ys)))

    return cost_map


__all__ = [
    "RejectionType",
    "SearchParameters",
    "SearchStrategy",
    "admission_mask",
    "compute_cost_map",
    "search_bounds",
]
