from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Tuple, Union

import numpy as np

from ..exceptions import TemplateStoreError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Rect = Tuple[int, int, int, int]

INT32 = np.dtype("<i4")


@dataclass(slots=True)
class TemplateRecord:
    """
    Persisted part of a template: its scale-1.0 image and the two rectangles.
    """

    template_id: int
    image: np.ndarray
    anchor: Rect
    region: Rect


def _int32_bytes(*values: int) -> bytes:
    return np.asarray(values, dtype=INT32).tobytes()


def encode_template_data(records: Iterable[TemplateRecord]) -> bytes:
    """
    Serialize records as little-endian int32 headers followed by raw pixels.

    Layout per file: template count, then for each template its id, rows,
    cols, channels, the row-major channel-interleaved uint8 pixels, the anchor
    rectangle and the search-region rectangle.
    """
    records = list(records)
    chunks = [_int32_bytes(len(records))]
    for record in records:
        image = np.ascontiguousarray(record.image)
        if image.dtype != np.uint8:
            raise ValueError(f"template {record.template_id} must be an 8-bit image")
        rows, cols = image.shape[:2]
        channels = 1 if image.ndim == 2 else image.shape[2]
        chunks.append(_int32_bytes(record.template_id, rows, cols, channels))
        chunks.append(image.tobytes())
        chunks.append(_int32_bytes(*record.anchor))
        chunks.append(_int32_bytes(*record.region))
    return b"".join(chunks)


class _Reader:
    def __init__(self, data: bytes, source: str) -> None:
        self.data = data
        self.source = source
        self.position = 0

    def ints(self, count: int) -> List[int]:
        return [int(v) for v in self._take(INT32, count)]

    def pixels(self, count: int) -> np.ndarray:
        return self._take(np.dtype(np.uint8), count).copy()

    def _take(self, dtype: np.dtype, count: int) -> np.ndarray:
        size = dtype.itemsize * count
        if self.position + size > len(self.data):
            raise TemplateStoreError(f"Truncated template data in {self.source}")
        values = np.frombuffer(self.data, dtype=dtype, count=count, offset=self.position)
        self.position += size
        return values


def decode_template_data(data: bytes, source: str = "<bytes>") -> List[TemplateRecord]:
    reader = _Reader(data, source)
    (count,) = reader.ints(1)
    if count < 0:
        raise TemplateStoreError(f"Invalid template count {count} in {source}")

    records: List[TemplateRecord] = []
    for _ in range(count):
        template_id, rows, cols, channels = reader.ints(4)
        if rows <= 0 or cols <= 0 or channels not in (1, 3, 4):
            raise TemplateStoreError(
                f"Invalid image header ({rows}x{cols}x{channels}) for template {template_id} in {source}"
            )
        pixels = reader.pixels(rows * cols * channels)
        image = pixels.reshape(rows, cols) if channels == 1 else pixels.reshape(rows, cols, channels)
        anchor = tuple(reader.ints(4))
        region = tuple(reader.ints(4))
        records.append(TemplateRecord(template_id=template_id, image=image, anchor=anchor, region=region))

    if reader.position != len(data):
        logger.warning("Ignoring %d trailing bytes in %s", len(data) - reader.position, source)
    return records


def write_template_data(path: PathLike, records: Iterable[TemplateRecord]) -> None:
    """
    Write template records to ``path``.
    """
    payload = encode_template_data(records)
    try:
        with Path(path).open("wb") as handle:
            handle.write(payload)
    except OSError as exc:
        raise TemplateStoreError(f"Unable to write template data to {path}") from exc


def read_template_data(path: PathLike) -> List[TemplateRecord]:
    """
    Read every template record stored in ``path``.
    """
    try:
        with Path(path).open("rb") as handle:
            payload = handle.read()
    except OSError as exc:
        raise TemplateStoreError(f"Unable to read template data from {path}") from exc
    return decode_template_data(payload, source=str(path))


__all__ = [
    "TemplateRecord",
    "decode_template_data",
    "encode_template_data",
    "read_template_data",
    "write_template_data",
]
