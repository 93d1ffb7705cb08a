from __future__ import annotations

import logging
import math

import cv2
import numpy as np
import pytest

from chamfermatch.matching.shape_info import (
    ShapeInfoBuilder,
    contour_orientations,
    detect_edges,
    distance_transform,
    find_contours,
    polar_line,
    rasterize_segment,
)


def test_distance_is_zero_on_edges_and_grows_away(square_template: np.ndarray) -> None:
    edges = detect_edges(square_template, 50.0)
    distance, labels = distance_transform(edges)

    assert distance.dtype == np.float32
    assert labels.shape == square_template.shape
    assert np.all(distance[edges > 0] == 0.0)
    assert distance[0, 0] > distance[9, 9]


def test_distance_transform_without_edges_uses_image_diagonal() -> None:
    edges = np.zeros((30, 40), dtype=np.uint8)
    distance, labels = distance_transform(edges)

    assert np.allclose(distance, 50.0)
    assert not np.any(labels)


def test_find_contours_drops_short_polylines() -> None:
    edges = np.zeros((40, 40), dtype=np.uint8)
    cv2.rectangle(edges, (10, 10), (25, 25), 255, thickness=1)
    edges[35, 35] = 255

    contours = find_contours(edges, min_points=2)

    assert contours
    assert all(len(contour) >= 2 for contour in contours)
    assert all(contour.shape[1] == 2 for contour in contours)
    assert not any((contour == [35, 35]).all(axis=1).any() for contour in contours)


def test_contour_orientations_share_endpoint_values() -> None:
    contour = np.array([[0, 0], [1, 0], [2, 0], [3, 1]], dtype=np.int32)

    orientations = contour_orientations(contour)

    assert orientations[1] == pytest.approx(math.pi / 2)
    assert orientations[0] == orientations[1]
    assert orientations[2] == pytest.approx(math.atan2(2.0, -1.0))
    assert orientations[3] == orientations[2]


def test_short_contour_orientation_is_zero_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        orientations = contour_orientations(np.array([[4, 4], [5, 4]], dtype=np.int32))

    assert orientations.tolist() == [0.0, 0.0]
    assert "too short" in caplog.text


def test_polar_line_parameters() -> None:
    theta, rho, length = polar_line((0, 5), (10, 5))
    assert theta == pytest.approx(math.pi / 2)
    assert rho == pytest.approx(5.0)
    assert length == pytest.approx(10.0)

    theta, rho, length = polar_line((3, 0), (3, 10))
    assert theta == pytest.approx(0.0)
    assert rho == pytest.approx(3.0)
    assert length == pytest.approx(10.0)


def test_rasterize_segment_covers_both_endpoints() -> None:
    points = rasterize_segment((0, 0), (4, 2))

    assert len(points) == 5
    assert points[0].tolist() == [0, 0]
    assert points[-1].tolist() == [4, 2]


def test_build_template_fields(square_template: np.ndarray) -> None:
    shape = ShapeInfoBuilder().build(square_template, with_grid_descriptors=True)

    assert shape.size == (40, 40)
    assert shape.contours
    assert len(shape.point_orientations) == len(shape.contours)
    for contour, orientations in zip(shape.contours, shape.point_orientations):
        assert len(contour) == len(orientations)
    assert len(shape.edge_points) == sum(len(contour) for contour in shape.contours)

    assert shape.mask[20, 20] == 255
    assert shape.mask[0, 0] == 0

    assert shape.grid_locations.shape == (16, 2)
    assert shape.grid_descriptors.shape == (16, 2)
    assert sorted(set(shape.grid_locations[:, 0].tolist())) == [5, 15, 25, 35]
    x, y = shape.grid_locations[0]
    assert shape.grid_descriptors[0, 0] == pytest.approx(shape.distance_field[y, x])

    assert shape.template_anchor == (0, 0, 0, 0)
    assert shape.search_region == (0, 0, 0, 0)


def test_line_approximation_records_segment_geometry(square_template: np.ndarray) -> None:
    shape = ShapeInfoBuilder().build(square_template)

    segments = [segment for contour in shape.lines for segment in contour]
    assert segments
    for segment in segments:
        dx = segment.end[0] - segment.start[0]
        dy = segment.end[1] - segment.start[1]
        assert segment.length == pytest.approx(math.hypot(dx, dy))
        assert 0.0 <= segment.theta < math.pi
    assert len(shape.line_points) >= len(segments)


def test_orientation_field_follows_nearest_edge_labels(square_template: np.ndarray) -> None:
    shape = ShapeInfoBuilder().build(square_template)

    last_seen = {}
    for point, orientation in zip(shape.edge_points, shape.edge_orientations):
        last_seen[(int(point[0]), int(point[1]))] = float(orientation)

    for (x, y), orientation in last_seen.items():
        assert shape.orientation_field[y, x] == pytest.approx(orientation)


def test_orientation_field_matches_label_owner_everywhere() -> None:
    image = np.full((80, 100), 255, dtype=np.uint8)
    cv2.circle(image, (30, 40), 15, 0, thickness=-1)
    cv2.rectangle(image, (60, 20), (85, 60), 0, thickness=-1)

    shape = ShapeInfoBuilder(canny_threshold=50.0).build(image)

    edges = cv2.Canny(image, 50.0, 150.0)
    inverted = np.where(edges > 0, 0, 255).astype(np.uint8)
    _, labels = cv2.distanceTransformWithLabels(
        inverted, cv2.DIST_L2, cv2.DIST_MASK_5, labelType=cv2.DIST_LABEL_PIXEL
    )

    owner = {}
    for point, orientation in zip(shape.edge_points, shape.edge_orientations):
        owner[int(labels[point[1], point[0]])] = float(orientation)
    lookup = np.zeros(int(labels.max()) + 1, dtype=np.float32)
    for label, orientation in owner.items():
        lookup[label] = orientation
    expected = lookup[labels]

    assert np.count_nonzero(edges == 0) > np.count_nonzero(edges)
    assert np.array_equal(shape.orientation_field, expected)


def test_build_is_idempotent(square_template: np.ndarray) -> None:
    builder = ShapeInfoBuilder(canny_threshold=40.0)
    first = builder.build(square_template)
    second = builder.build(square_template)

    assert np.array_equal(first.distance_field, second.distance_field)
    assert np.array_equal(first.orientation_field, second.orientation_field)
    assert len(first.contours) == len(second.contours)
    for a, b in zip(first.contours, second.contours):
        assert np.array_equal(a, b)


def test_build_blank_image_has_no_contours() -> None:
    shape = ShapeInfoBuilder().build(np.full((30, 30), 200, dtype=np.uint8), with_grid_descriptors=True)

    assert shape.contours == []
    assert len(shape.edge_points) == 0
    assert len(shape.line_points) == 0
    assert not np.any(shape.orientation_field)
    assert not np.any(shape.mask)
    assert shape.grid_descriptors.shape == (16, 2)


def test_build_accepts_color_images(square_template: np.ndarray) -> None:
    builder = ShapeInfoBuilder()
    color = cv2.cvtColor(square_template, cv2.COLOR_GRAY2BGR)

    gray_shape = builder.build(square_template)
    color_shape = builder.build(color)

    assert np.array_equal(gray_shape.distance_field, color_shape.distance_field)


def test_builder_rejects_invalid_input() -> None:
    with pytest.raises(ValueError):
        ShapeInfoBuilder(canny_threshold=0)
    with pytest.raises(ValueError):
        ShapeInfoBuilder().build(np.zeros((10, 10), dtype=np.float32))


def test_shape_info_compares_by_identity(square_template: np.ndarray) -> None:
    builder = ShapeInfoBuilder()
    first = builder.build(square_template)
    second = builder.build(square_template)

    assert first == first
    assert first != second
    assert len({first, second}) == 2
