from __future__ import annotations

import cv2
import numpy as np
import pytest


def draw_square_template(size: int = 40, margin: int = 10) -> np.ndarray:
    template = np.full((size, size), 255, dtype=np.uint8)
    cv2.rectangle(template, (margin, margin), (size - margin - 1, size - margin - 1), 0, thickness=-1)
    return template


def place(canvas_shape: tuple, patch: np.ndarray, x: int, y: int) -> np.ndarray:
    canvas = np.full(canvas_shape, 255, dtype=np.uint8)
    h, w = patch.shape[:2]
    canvas[y : y + h, x : x + w] = patch
    return canvas


@pytest.fixture
def square_template() -> np.ndarray:
    return draw_square_template()


@pytest.fixture
def square_query(square_template: np.ndarray) -> np.ndarray:
    return place((120, 160), square_template, 30, 40)


@pytest.fixture
def paste():
    return place
