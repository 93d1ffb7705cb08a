from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

Rect = Tuple[int, int, int, int]
Point = Tuple[int, int]

EMPTY_RECT: Rect = (0, 0, 0, 0)


@dataclass(frozen=True, slots=True)
class LineSegment:
    """
    Straight piece of a simplified contour with its polar line parameters.
    """

    start: Point
    end: Point
    length: float
    theta: float
    rho: float


@dataclass(frozen=True, slots=True, eq=False)
class ShapeInfo:
    """
    Edge-derived representation of one image at one scale.

    Everything is built once by ``ShapeInfoBuilder`` and only read afterwards.
    Points are stored as ``(x, y)`` pairs, fields as ``(rows, cols)`` arrays.
    """

    contours: List[np.ndarray]
    distance_field: np.ndarray
    orientation_field: np.ndarray
    point_orientations: List[np.ndarray]
    lines: List[List[LineSegment]]
    mask: np.ndarray
    edge_points: np.ndarray
    edge_orientations: np.ndarray
    line_points: np.ndarray
    grid_locations: np.ndarray
    grid_descriptors: np.ndarray
    template_anchor: Rect = EMPTY_RECT
    search_region: Rect = EMPTY_RECT

    @property
    def width(self) -> int:
        return int(self.distance_field.shape[1])

    @property
    def height(self) -> int:
        return int(self.distance_field.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def with_geometry(self, template_anchor: Rect, search_region: Rect) -> ShapeInfo:
        """
        Return a copy carrying the template anchor and query search region.
        """
        return dataclasses.replace(
            self,
            template_anchor=tuple(int(v) for v in template_anchor),
            search_region=tuple(int(v) for v in search_region),
        )


def to_grayscale(image: np.ndarray) -> np.ndarray:
    if image.dtype != np.uint8:
        raise ValueError("image must be an 8-bit array")
    if image.ndim == 2:
        return image
    if image.ndim == 3:
        channels = image.shape[2]
        if channels == 1:
            return np.ascontiguousarray(image[:, :, 0])
        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    raise ValueError(f"unsupported image shape {image.shape}")


def detect_edges(image: np.ndarray, threshold: float) -> np.ndarray:
    """
    Canny edge map (255 on edges) using a fixed 1:3 low/high threshold ratio.
    """
    return cv2.Canny(image, threshold, 3.0 * threshold)


def distance_transform(edges: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Distance to the nearest edge pixel and the label of that edge pixel.

    ``edges`` holds 255 on edge pixels. Every edge pixel gets its own label.
    """
    if not np.any(edges):
        height, width = edges.shape[:2]
        distance = np.full((height, width), math.hypot(width, height), dtype=np.float32)
        return distance, np.zeros((height, width), dtype=np.int32)

    # distanceTransform measures the distance to zero pixels, so edges must read 0.
    _, inverted = cv2.threshold(edges, 127, 255, cv2.THRESH_BINARY_INV)
    distance, labels = cv2.distanceTransformWithLabels(
        inverted,
        cv2.DIST_L2,
        cv2.DIST_MASK_5,
        labelType=cv2.DIST_LABEL_PIXEL,
    )
    return distance.astype(np.float32, copy=False), labels.astype(np.int32, copy=False)


def find_contours(edges: np.ndarray, min_points: int = 2) -> List[np.ndarray]:
    """
    Ordered contour polylines of the edge map as ``(N, 2)`` arrays of ``(x, y)``.
    """
    raw_contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_NONE)
    return [
        contour.reshape(-1, 2).astype(np.int32)
        for contour in raw_contours
        if len(contour) >= min_points
    ]


def approximate_contour(points: np.ndarray, epsilon: float) -> np.ndarray:
    approx = cv2.approxPolyDP(points.reshape(-1, 1, 2).astype(np.int32), epsilon, True)
    return approx.reshape(-1, 2)


def polar_line(start: Sequence[int], end: Sequence[int]) -> Tuple[float, float, float]:
    """
    Return ``(theta, rho, length)`` of the line through two points.

    ``theta`` is the normal angle folded to [0, pi) and ``rho`` the signed
    distance of the line from the origin.
    """
    dx = float(end[0] - start[0])
    dy = float(end[1] - start[1])
    theta = math.atan2(dx, -dy)
    if theta < 0.0:
        theta += math.pi
    if theta >= math.pi:
        theta -= math.pi
    rho = start[0] * math.cos(theta) + start[1] * math.sin(theta)
    return theta, rho, math.hypot(dx, dy)


def line_orientation(starts: np.ndarray, ends: np.ndarray) -> np.ndarray:
    """
    Vectorized normal angle, in [0, pi), of the lines through paired points.
    """
    delta = ends.astype(np.float64) - starts.astype(np.float64)
    angles = np.mod(np.arctan2(delta[:, 0], -delta[:, 1]), np.pi)
    return angles.astype(np.float32)


def contour_orientations(contour: np.ndarray) -> np.ndarray:
    """
    Orientation of every contour point from its previous and next neighbours.

    The first point shares the second point's orientation and the last point
    repeats its predecessor's.
    """
    count = len(contour)
    if count <= 2:
        logger.warning("Contour with %d points is too short to estimate orientation", count)
        return np.zeros(count, dtype=np.float32)

    orientations = np.empty(count, dtype=np.float32)
    orientations[1:-1] = line_orientation(contour[:-2], contour[2:])
    orientations[0] = orientations[1]
    orientations[-1] = orientations[-2]
    return orientations


def rasterize_segment(start: Point, end: Point) -> np.ndarray:
    """
    8-connected pixels from ``start`` to ``end`` inclusive.
    """
    x0, y0 = start
    x1, y1 = end
    count = max(abs(x1 - x0), abs(y1 - y0)) + 1
    xs = np.rint(np.linspace(x0, x1, count)).astype(np.int32)
    ys = np.rint(np.linspace(y0, y1, count)).astype(np.int32)
    return np.column_stack([xs, ys])


def _empty_points() -> np.ndarray:
    return np.empty((0, 2), dtype=np.int32)


class ShapeInfoBuilder:
    """
    Turns a raw image into its ``ShapeInfo`` representation.
    """

    def __init__(
        self,
        canny_threshold: float = 50.0,
        min_contour_points: int = 2,
        approx_epsilon: float = 3.0,
        grid_size: Tuple[int, int] = (4, 4),
    ) -> None:
        if canny_threshold <= 0:
            raise ValueError("canny_threshold must be positive")
        if min_contour_points < 1:
            raise ValueError("min_contour_points must be >= 1")
        if approx_epsilon < 0:
            raise ValueError("approx_epsilon must be >= 0")
        if len(grid_size) != 2 or grid_size[0] < 1 or grid_size[1] < 1:
            raise ValueError("grid_size must hold two positive integers")
        self.canny_threshold = canny_threshold
        self.min_contour_points = min_contour_points
        self.approx_epsilon = approx_epsilon
        self.grid_size = (int(grid_size[0]), int(grid_size[1]))

    def build(self, image: np.ndarray, with_grid_descriptors: bool = False) -> ShapeInfo:
        """
        Compute every derived field of ``image``.

        Grid descriptors are only sampled when ``with_grid_descriptors`` is set,
        which is the case for templates.
        """
        gray = to_grayscale(image)
        edges = detect_edges(gray, self.canny_threshold)
        distance, labels = distance_transform(edges)

        contours = find_contours(edges, self.min_contour_points)
        point_orientations = [contour_orientations(contour) for contour in contours]
        if contours:
            edge_points = np.concatenate(contours).astype(np.int32)
            edge_orientations = np.concatenate(point_orientations).astype(np.float32)
        else:
            edge_points = _empty_points()
            edge_orientations = np.empty(0, dtype=np.float32)

        orientation_field = self._orientation_field(labels, edge_points, edge_orientations)
        mask = self._mask(gray.shape, contours)
        lines = [self._approximate_lines(contour) for contour in contours]
        line_points = self._line_points(lines)

        if with_grid_descriptors:
            grid_locations, grid_descriptors = self._grid_descriptors(distance, orientation_field)
        else:
            grid_locations = _empty_points()
            grid_descriptors = np.empty((0, 2), dtype=np.float32)

        logger.debug(
            "Built shape info %dx%d with %d contours (%d edge points)",
            gray.shape[1],
            gray.shape[0],
            len(contours),
            len(edge_points),
        )

        return ShapeInfo(
            contours=contours,
            distance_field=distance,
            orientation_field=orientation_field,
            point_orientations=point_orientations,
            lines=lines,
            mask=mask,
            edge_points=edge_points,
            edge_orientations=edge_orientations,
            line_points=line_points,
            grid_locations=grid_locations,
            grid_descriptors=grid_descriptors,
        )

    @staticmethod
    def _orientation_field(
        labels: np.ndarray,
        edge_points: np.ndarray,
        edge_orientations: np.ndarray,
    ) -> np.ndarray:
        field = np.zeros(labels.shape, dtype=np.float32)
        if len(edge_points) == 0:
            return field

        # label -> index of the contour point (flattened over all contours) that owns it
        point_labels = labels[edge_points[:, 1], edge_points[:, 0]]
        lookup = np.full(int(labels.max()) + 1, -1, dtype=np.int64)
        unique_labels, first_from_end = np.unique(point_labels[::-1], return_index=True)
        lookup[unique_labels] = len(point_labels) - 1 - first_from_end

        indices = lookup[labels]
        known = indices >= 0
        field[known] = edge_orientations[indices[known]]
        return field

    @staticmethod
    def _mask(shape: Tuple[int, ...], contours: List[np.ndarray]) -> np.ndarray:
        mask = np.zeros(shape[:2], dtype=np.uint8)
        for contour in contours:
            cv2.drawContours(mask, [contour.reshape(-1, 1, 2)], -1, 255, thickness=cv2.FILLED)
        return mask

    def _approximate_lines(self, contour: np.ndarray) -> List[LineSegment]:
        approx = approximate_contour(contour, self.approx_epsilon)
        segments: List[LineSegment] = []
        for start, end in zip(approx[:-1], approx[1:]):
            start_pt = (int(start[0]), int(start[1]))
            end_pt = (int(end[0]), int(end[1]))
            theta, rho, length = polar_line(start_pt, end_pt)
            segments.append(LineSegment(start=start_pt, end=end_pt, length=length, theta=theta, rho=rho))
        return segments

    @staticmethod
    def _line_points(lines: List[List[LineSegment]]) -> np.ndarray:
        pieces = [rasterize_segment(segment.start, segment.end) for contour in lines for segment in contour]
        if not pieces:
            return _empty_points()
        return np.concatenate(pieces).astype(np.int32)

    def _grid_descriptors(
        self,
        distance: np.ndarray,
        orientation_field: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        height, width = distance.shape
        columns, rows = self.grid_size
        xs = np.minimum(((np.arange(columns) + 0.5) * width / columns).astype(np.int32), width - 1)
        ys = np.minimum(((np.arange(rows) + 0.5) * height / rows).astype(np.int32), height - 1)
        grid_x, grid_y = np.meshgrid(xs, ys)
        locations = np.column_stack([grid_x.ravel(), grid_y.ravel()]).astype(np.int32)
        descriptors = np.column_stack(
            [
                distance[locations[:, 1], locations[:, 0]],
                orientation_field[locations[:, 1], locations[:, 0]],
            ]
        ).astype(np.float32)
        return locations, descriptors


__all__ = [
    "EMPTY_RECT",
    "LineSegment",
    "Rect",
    "ShapeInfo",
    "ShapeInfoBuilder",
    "approximate_contour",
    "contour_orientations",
    "detect_edges",
    "distance_transform",
    "find_contours",
    "line_orientation",
    "polar_line",
    "rasterize_segment",
    "to_grayscale",
]
