from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .shape_info import Rect

UNASSIGNED = -1


@dataclass(slots=True)
class Detection:
    """
    One template placement found in the query; lower cost is a better match.
    """

    bounding_box: Rect
    cost: float
    scale: float = 1.0
    template_id: int = UNASSIGNED

    @property
    def top_left(self) -> Tuple[int, int]:
        return self.bounding_box[0], self.bounding_box[1]

    @property
    def area(self) -> int:
        return self.bounding_box[2] * self.bounding_box[3]


def detection_sort_key(detection: Detection) -> Tuple[float, int, float, Rect]:
    return detection.cost, detection.template_id, detection.scale, detection.bounding_box


def sort_detections(detections: Iterable[Detection]) -> List[Detection]:
    """
    Order by ascending cost, ties by template id, scale, then box.
    """
    return sorted(detections, key=detection_sort_key)


def rect_intersection(a: Rect, b: Rect) -> Rect:
    x0 = max(a[0], b[0])
    y0 = max(a[1], b[1])
    x1 = min(a[0] + a[2], b[0] + b[2])
    y1 = min(a[1] + a[3], b[1] + b[3])
    if x1 <= x0 or y1 <= y0:
        return 0, 0, 0, 0
    return x0, y0, x1 - x0, y1 - y0


def overlap_ratio(a: Rect, b: Rect) -> float:
    """
    Intersection over union of two ``(x, y, w, h)`` rectangles.
    """
    intersection = rect_intersection(a, b)
    inter_area = intersection[2] * intersection[3]
    union = a[2] * a[3] + b[2] * b[3] - inter_area
    if union <= 0:
        return 0.0
    return inter_area / union


def strictly_contains(outer: Rect, inner: Rect) -> bool:
    return (
        inner[0] > outer[0]
        and inner[1] > outer[1]
        and inner[0] + inner[2] < outer[0] + outer[2]
        and inner[1] + inner[3] < outer[1] + outer[3]
    )


def extract_detections(
    cost_map: np.ndarray,
    template_size: Tuple[int, int],
    scale: float,
    distance_threshold: float,
    max_iterations: int = 100,
    template_id: int = UNASSIGNED,
) -> List[Detection]:
    """
    Pull cost-map minima below ``distance_threshold``, best first.

    Each selected cell is reset to +inf on a scratch copy so it cannot be
    picked again; neighbours are kept, grouping is left to the caller. At most
    ``max_iterations`` detections are returned.
    """
    if max_iterations < 0:
        raise ValueError("max_iterations must be >= 0")

    scratch = np.array(cost_map, dtype=np.float32, copy=True)
    width, height = template_size
    detections: List[Detection] = []

    for _ in range(max_iterations):
        if scratch.size == 0:
            break
        flat_index = int(np.argmin(scratch))
        row, column = np.unravel_index(flat_index, scratch.shape)
        value = float(scratch[row, column])
        if not value < distance_threshold:
            break
        detections.append(
            Detection(
                bounding_box=(int(column), int(row), int(width), int(height)),
                cost=value,
                scale=scale,
                template_id=template_id,
            )
        )
        scratch[row, column] = np.inf

    return detections


def group_detections(
    detections: Sequence[Detection],
    overlap_threshold: float = 0.5,
) -> List[Detection]:
    """
    Merge detections whose IoU with a cluster seed exceeds ``overlap_threshold``.

    Seeds are taken in input order. A cluster is replaced by its mean position
    (keeping the seed's size), mean cost, mean scale and most frequent template
    id, the first one seen winning ties.

    Representatives are not merged again, so two of them may still overlap
    above ``overlap_threshold`` once their positions have been averaged.
    """
    picked = [False] * len(detections)
    clusters: List[List[Detection]] = []

    for seed_index, seed in enumerate(detections):
        if picked[seed_index]:
            continue
        picked[seed_index] = True
        cluster = [seed]
        for other_index in range(seed_index + 1, len(detections)):
            if picked[other_index]:
                continue
            other = detections[other_index]
            if overlap_ratio(seed.bounding_box, other.bounding_box) > overlap_threshold:
                picked[other_index] = True
                cluster.append(other)
        clusters.append(cluster)

    grouped: List[Detection] = []
    for cluster in clusters:
        size = len(cluster)
        x_mean = sum(d.bounding_box[0] for d in cluster) / size
        y_mean = sum(d.bounding_box[1] for d in cluster) / size
        cost_mean = math.fsum(d.cost for d in cluster) / size
        scale_mean = math.fsum(d.scale for d in cluster) / size
        template_id = Counter(d.template_id for d in cluster).most_common(1)[0][0]
        width, height = cluster[0].bounding_box[2], cluster[0].bounding_box[3]
        grouped.append(
            Detection(
                bounding_box=(int(round(x_mean)), int(round(y_mean)), width, height),
                cost=cost_mean,
                scale=scale_mean,
                template_id=template_id,
            )
        )
    return grouped


def non_maxima_suppression(detections: Sequence[Detection]) -> List[Detection]:
    """
    Drop every detection whose box lies strictly inside another one.

    Survivors are returned sorted by increasing box area.
    """
    by_area = sorted(detections, key=lambda detection: detection.area)
    survivors: List[Detection] = []
    for index, candidate in enumerate(by_area):
        inside = any(
            strictly_contains(other.bounding_box, candidate.bounding_box)
            for other in by_area[index + 1 :]
        )
        if not inside:
            survivors.append(candidate)
    return survivors


__all__ = [
    "Detection",
    "UNASSIGNED",
    "detection_sort_key",
    "extract_detections",
    "group_detections",
    "non_maxima_suppression",
    "overlap_ratio",
    "rect_intersection",
    "sort_detections",
    "strictly_contains",
]
