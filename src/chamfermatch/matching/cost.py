from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from .shape_info import ShapeInfo

Offset = Tuple[int, int]


class MatchingType(str, Enum):
    """
    Cost function family used to compare a template with the query.
    """

    EDGE = "edge"
    EDGE_FORWARD_BACKWARD = "edge_forward_backward"
    LINE = "line"
    LINE_FORWARD_BACKWARD = "line_forward_backward"
    FULL = "full"
    MASK = "mask"
    MASK_FORWARD_BACKWARD = "mask_forward_backward"


def angular_error(a, b, symmetric: bool = False):
    """
    Smallest angle between orientations ``a`` and ``b`` (radians).

    With ``symmetric`` the orientations are axis-symmetric (period pi) and the
    error is bounded by pi/2, otherwise by pi. Works on scalars and arrays.
    """
    period = math.pi if symmetric else 2.0 * math.pi
    diff = np.mod(np.abs(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)), period)
    error = np.minimum(diff, period - diff)
    if error.ndim == 0:
        return float(error)
    return error


def normalized_cost(total: float, count: int) -> float:
    """
    Mean cost over ``count`` contributions; no contribution is a non-match.
    """
    if count <= 0:
        return math.inf
    return total / count


class CostFunction:
    """
    Scores a template placed at an integer offset inside the query.
    """

    def evaluate(self, template: ShapeInfo, query: ShapeInfo, offset: Offset) -> float:
        raise NotImplementedError


@dataclass(slots=True)
class ChamferCost(CostFunction):
    """
    Chamfer distance over contour pixels, optionally symmetric.

    The forward pass samples the query fields under every template point. The
    backward pass samples the template fields under every query point that
    falls inside the template footprint. Both weighted sums are divided by the
    total number of sampled points.
    """

    use_orientation: bool = True
    orientation_weight: float = 5.0
    weight_forward: float = 1.0
    weight_backward: float = 1.0
    backward: bool = False

    def sample_points(self, shape: ShapeInfo) -> Tuple[np.ndarray, np.ndarray]:
        return shape.edge_points, shape.edge_orientations

    def evaluate(self, template: ShapeInfo, query: ShapeInfo, offset: Offset) -> float:
        offset_x, offset_y = offset
        points, orientations = self.sample_points(template)
        total, count = self._forward(points, orientations, query, offset_x, offset_y)

        if self.backward:
            query_points, query_orientations = self.sample_points(query)
            backward_total, backward_count = self._backward(
                query_points, query_orientations, template, offset_x, offset_y
            )
            total += backward_total
            count += backward_count

        return normalized_cost(total, count)

    def _forward(
        self,
        points: np.ndarray,
        orientations: np.ndarray,
        query: ShapeInfo,
        offset_x: int,
        offset_y: int,
    ) -> Tuple[float, int]:
        if len(points) == 0:
            return 0.0, 0
        xs = points[:, 0] + offset_x
        ys = points[:, 1] + offset_y
        total = self._sum(orientations, query.distance_field[ys, xs], query.orientation_field[ys, xs])
        return self.weight_forward * total, len(points)

    def _backward(
        self,
        points: np.ndarray,
        orientations: np.ndarray,
        template: ShapeInfo,
        offset_x: int,
        offset_y: int,
    ) -> Tuple[float, int]:
        if len(points) == 0:
            return 0.0, 0
        xs = points[:, 0] - offset_x
        ys = points[:, 1] - offset_y
        inside = (xs >= 0) & (xs < template.width) & (ys >= 0) & (ys < template.height)
        if not np.any(inside):
            return 0.0, 0
        xs = xs[inside]
        ys = ys[inside]
        total = self._sum(
            orientations[inside],
            template.distance_field[ys, xs],
            template.orientation_field[ys, xs],
        )
        return self.weight_backward * total, int(np.count_nonzero(inside))

    def _sum(self, orientations: np.ndarray, distances: np.ndarray, other_orientations: np.ndarray) -> float:
        total = float(distances.sum(dtype=np.float64))
        if self.use_orientation:
            errors = angular_error(orientations, other_orientations, symmetric=True)
            total += self.orientation_weight * float(np.sum(errors))
        return total


class LineCost(ChamferCost):
    """
    Chamfer distance sampled along the rasterized simplified contour lines.
    """

    def sample_points(self, shape: ShapeInfo) -> Tuple[np.ndarray, np.ndarray]:
        points = shape.line_points
        if len(points) == 0:
            return points, np.empty(0, dtype=np.float32)
        return points, shape.orientation_field[points[:, 1], points[:, 0]]


@dataclass(slots=True)
class FieldCost(CostFunction):
    """
    Mean absolute difference of the distance fields over the whole window.
    """

    use_orientation: bool = True
    orientation_weight: float = 5.0

    def selection(self, template: ShapeInfo, query: ShapeInfo, window: Tuple[slice, slice]) -> Optional[np.ndarray]:
        return None

    def evaluate(self, template: ShapeInfo, query: ShapeInfo, offset: Offset) -> float:
        offset_x, offset_y = offset
        window = (
            slice(offset_y, offset_y + template.height),
            slice(offset_x, offset_x + template.width),
        )
        selected = self.selection(template, query, window)

        distance_diff = np.abs(query.distance_field[window] - template.distance_field)
        if selected is None:
            count = distance_diff.size
        else:
            distance_diff = distance_diff[selected]
            count = int(np.count_nonzero(selected))
        total = float(distance_diff.sum(dtype=np.float64))

        if self.use_orientation:
            orientation_diff = angular_error(query.orientation_field[window], template.orientation_field, symmetric=True)
            if selected is not None:
                orientation_diff = orientation_diff[selected]
            total += self.orientation_weight * float(np.sum(orientation_diff))

        return normalized_cost(total, count)


@dataclass(slots=True)
class MaskedCost(FieldCost):
    """
    Field difference restricted to the template mask, or to the union of the
    template mask and the query mask under the window.
    """

    use_query_mask: bool = False

    def selection(self, template: ShapeInfo, query: ShapeInfo, window: Tuple[slice, slice]) -> Optional[np.ndarray]:
        selected = template.mask > 0
        if self.use_query_mask:
            selected = selected | (query.mask[window] > 0)
        return selected


def make_cost_function(
    matching_type: Union[MatchingType, str] = MatchingType.EDGE,
    use_orientation: bool = True,
    orientation_weight: float = 5.0,
    weight_forward: float = 1.0,
    weight_backward: float = 1.0,
) -> CostFunction:
    """
    Build the cost strategy for ``matching_type``.
    """
    matching_type = MatchingType(matching_type)
    if matching_type in (MatchingType.EDGE, MatchingType.EDGE_FORWARD_BACKWARD):
        return ChamferCost(
            use_orientation=use_orientation,
            orientation_weight=orientation_weight,
            weight_forward=weight_forward,
            weight_backward=weight_backward,
            backward=matching_type is MatchingType.EDGE_FORWARD_BACKWARD,
        )
    if matching_type in (MatchingType.LINE, MatchingType.LINE_FORWARD_BACKWARD):
        return LineCost(
            use_orientation=use_orientation,
            orientation_weight=orientation_weight,
            weight_forward=weight_forward,
            weight_backward=weight_backward,
            backward=matching_type is MatchingType.LINE_FORWARD_BACKWARD,
        )
    if matching_type is MatchingType.FULL:
        return FieldCost(use_orientation=use_orientation, orientation_weight=orientation_weight)
    if matching_type in (MatchingType.MASK, MatchingType.MASK_FORWARD_BACKWARD):
        return MaskedCost(
            use_orientation=use_orientation,
            orientation_weight=orientation_weight,
            use_query_mask=matching_type is MatchingType.MASK_FORWARD_BACKWARD,
        )
    raise ValueError(f"unsupported matching type: {matching_type}")


__all__ = [
    "ChamferCost",
    "CostFunction",
    "FieldCost",
    "LineCost",
    "MaskedCost",
    "MatchingType",
    "angular_error",
    "make_cost_function",
    "normalized_cost",
]
