from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Tuple

import cv2
import numpy as np

from ..exceptions import ConfigurationError
from ..io.template_store import PathLike, TemplateRecord, read_template_data, write_template_data
from .shape_info import Rect, ShapeInfo, ShapeInfoBuilder

logger = logging.getLogger(__name__)

TemplateRegions = Tuple[Rect, Rect]


def validate_scale_range(scale_min: float, scale_max: float, scale_step: float) -> None:
    if not (scale_min > 0 and scale_max > 0 and scale_max >= scale_min and scale_step > 0):
        raise ConfigurationError(
            f"Invalid scale range: min={scale_min}, max={scale_max}, step={scale_step} "
            "(expected min > 0, max > 0, max >= min, step > 0)"
        )


def scale_steps(scale_min: float, scale_max: float, scale_step: float) -> List[float]:
    """
    Scales from ``scale_min`` to ``scale_max`` inclusive, ``scale_step`` apart.

    Values are rounded to avoid floating point accumulation, so 0.5 + 10 * 0.1
    yields exactly 1.5.
    """
    count = int(math.floor((scale_max - scale_min) / scale_step + 1e-9)) + 1
    return [round(scale_min + index * scale_step, 6) for index in range(count)]


def _validate_rect(rect, name: str, template_id: int) -> Rect:
    values = tuple(int(v) for v in rect)
    if len(values) != 4:
        raise ConfigurationError(f"{name} of template {template_id} must be (x, y, width, height)")
    return values


def _validate_image(image: np.ndarray, template_id: int) -> None:
    if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
        raise ConfigurationError(f"Template {template_id} must be an 8-bit numpy image")
    if image.ndim not in (2, 3) or (image.ndim == 3 and image.shape[2] not in (1, 3, 4)):
        raise ConfigurationError(f"Template {template_id} has unsupported shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ConfigurationError(f"Template {template_id} is empty")


class TemplateStore:
    """
    Template images with their prepared shape data at every scale.

    Scale 1.0 is always present and is the only entry carrying the template
    anchor and query search region. The other scales are rebuilt from the
    original image whenever templates or the scale range change.
    """

    def __init__(
        self,
        builder: ShapeInfoBuilder,
        scale_min: float = 0.5,
        scale_max: float = 2.0,
        scale_step: float = 0.1,
    ) -> None:
        validate_scale_range(scale_min, scale_max, scale_step)
        self.builder = builder
        self._scale_range = (float(scale_min), float(scale_max), float(scale_step))
        self._images: Dict[int, np.ndarray] = {}
        self._shapes: Dict[int, Dict[float, ShapeInfo]] = {}

    @property
    def scale_range(self) -> Tuple[float, float, float]:
        return self._scale_range

    @property
    def ids(self) -> List[int]:
        return sorted(self._shapes)

    def __len__(self) -> int:
        return len(self._shapes)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._shapes

    def image(self, template_id: int) -> np.ndarray:
        return self._images[template_id]

    def shapes(self, template_id: int) -> Dict[float, ShapeInfo]:
        return self._shapes[template_id]

    def shape(self, template_id: int, scale: float = 1.0) -> ShapeInfo:
        return self._shapes[template_id][scale]

    def scales(self) -> List[float]:
        """
        Scales prepared for every template, 1.0 included.
        """
        scale_min, scale_max, scale_step = self._scale_range
        extra = [
            scale
            for scale in scale_steps(scale_min, scale_max, scale_step)
            if abs(scale - 1.0) > scale_step / 100.0
        ]
        return sorted({1.0, *extra})

    def set_templates(
        self,
        images: Mapping[int, np.ndarray],
        regions: Mapping[int, TemplateRegions],
    ) -> None:
        """
        Replace every template.

        ``regions[id]`` is ``(template_anchor, search_region)``. Both mappings
        must hold the same ids, otherwise nothing is changed.
        """
        if len(images) != len(regions):
            raise ConfigurationError(
                f"Different number of templates ({len(images)}) and regions ({len(regions)})"
            )
        missing = sorted(set(images) - set(regions))
        if missing:
            raise ConfigurationError(f"No regions given for template ids {missing}")

        records = []
        for template_id, image in images.items():
            _validate_image(image, template_id)
            anchor, region = regions[template_id]
            records.append(
                TemplateRecord(
                    template_id=int(template_id),
                    image=image.copy(),
                    anchor=_validate_rect(anchor, "template anchor", template_id),
                    region=_validate_rect(region, "search region", template_id),
                )
            )
        self._replace(records)
        logger.info("Prepared %d templates at %d scales", len(records), len(self.scales()))

    def set_scale_range(self, scale_min: float, scale_max: float, scale_step: float) -> None:
        validate_scale_range(scale_min, scale_max, scale_step)
        previous = self._scale_range
        self._scale_range = (float(scale_min), float(scale_max), float(scale_step))
        try:
            self._replace(self.records())
        except Exception:
            self._scale_range = previous
            raise
        logger.info("Scale range set to [%s, %s] step %s", scale_min, scale_max, scale_step)

    def records(self) -> List[TemplateRecord]:
        records = []
        for template_id in self.ids:
            base = self._shapes[template_id][1.0]
            records.append(
                TemplateRecord(
                    template_id=template_id,
                    image=self._images[template_id],
                    anchor=base.template_anchor,
                    region=base.search_region,
                )
            )
        return records

    def save(self, path: PathLike) -> None:
        write_template_data(path, self.records())
        logger.info("Saved %d templates to %s", len(self), path)

    def load(self, path: PathLike) -> None:
        """
        Replace every template with the ones stored in ``path``.
        """
        records = read_template_data(path)
        self._replace(records)
        logger.info("Loaded %d templates from %s", len(records), path)

    def _replace(self, records: List[TemplateRecord]) -> None:
        # Build everything first so that a failure leaves the store untouched.
        images: Dict[int, np.ndarray] = {}
        shapes: Dict[int, Dict[float, ShapeInfo]] = {}
        for record in records:
            images[record.template_id] = record.image
            shapes[record.template_id] = self._prepare(record)
        self._images = images
        self._shapes = shapes

    def _prepare(self, record: TemplateRecord) -> Dict[float, ShapeInfo]:
        image = record.image
        prepared: Dict[float, ShapeInfo] = {}
        for scale in self.scales():
            if scale == 1.0:
                base = self.builder.build(image, with_grid_descriptors=True)
                prepared[scale] = base.with_geometry(record.anchor, record.region)
                continue
            height, width = image.shape[:2]
            size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
            resized = cv2.resize(image, size)
            prepared[scale] = self.builder.build(resized, with_grid_descriptors=True)
        return prepared


__all__ = ["TemplateRegions", "TemplateStore", "scale_steps", "validate_scale_range"]
