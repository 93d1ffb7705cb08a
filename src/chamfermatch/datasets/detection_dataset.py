from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np

from ..io.image_loader import load_grayscale
from ..matching.shape_info import EMPTY_RECT, Rect

ANCHOR_COLUMNS = ("anchor_x", "anchor_y", "anchor_width", "anchor_height")
ROI_COLUMNS = ("roi_x", "roi_y", "roi_width", "roi_height")


@dataclass(slots=True)
class TemplateEntry:
    """
    Template image declared in the dataset manifest.
    """

    template_id: int
    image_path: Path
    anchor: Rect
    region: Rect


@dataclass(slots=True)
class GroundTruthRecord:
    """
    Expected detection for a single query frame.
    """

    name: str
    template_id: int
    box: Rect
    image_path: Path


@dataclass(slots=True)
class DetectionDataset:
    """
    Templates plus annotated query frames.
    """

    templates: List[TemplateEntry]
    records: List[GroundTruthRecord]
    root: Path


def load_detection_dataset(
    root: Path | str,
    csv_name: str = "result0.csv",
    templates_csv: str = "templates.csv",
) -> DetectionDataset:
    """
    Load a detection dataset with standard folder layout.

    Expected directory structure:
        root/
            imgs/
            model/
            csv/
                templates.csv
                result0.csv
    """
    root_path = Path(root)
    csv_dir = root_path / "csv"
    images_dir = root_path / "imgs"
    model_dir = root_path / "model"

    if not (csv_dir / csv_name).exists():
        raise FileNotFoundError(f"CSV file not found: {csv_dir / csv_name}")
    if not (csv_dir / templates_csv).exists():
        raise FileNotFoundError(f"Template manifest not found: {csv_dir / templates_csv}")
    if not images_dir.exists():
        raise FileNotFoundError(f"Images directory not found: {images_dir}")
    if not model_dir.exists():
        raise FileNotFoundError(f"Model directory not found: {model_dir}")

    templates = _load_templates(csv_dir / templates_csv, model_dir)
    if not templates:
        raise ValueError(f"No templates declared in {csv_dir / templates_csv}")

    records = _load_records(csv_dir / csv_name, images_dir)
    if not records:
        raise ValueError(f"No samples found in {csv_dir / csv_name}")

    return DetectionDataset(templates=templates, records=records, root=root_path)


def load_template_inputs(
    dataset: DetectionDataset,
) -> Tuple[Dict[int, np.ndarray], Dict[int, Tuple[Rect, Rect]]]:
    """
    Read template images and rectangles in the form ``set_templates`` expects.
    """
    images = {entry.template_id: load_grayscale(entry.image_path) for entry in dataset.templates}
    regions = {entry.template_id: (entry.anchor, entry.region) for entry in dataset.templates}
    return images, regions


def _read_rect(row: Dict[str, str], columns: Tuple[str, ...]) -> Rect:
    if all(row.get(column) in (None, "") for column in columns):
        return EMPTY_RECT
    return tuple(int(float(row[column])) for column in columns)


def _load_templates(manifest_path: Path, model_dir: Path) -> List[TemplateEntry]:
    entries: List[TemplateEntry] = []
    seen: set[int] = set()
    with manifest_path.open(newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None:
            raise ValueError("Template manifest must include a header row.")
        if "id" not in reader.fieldnames or "name" not in reader.fieldnames:
            raise ValueError("Template manifest header must contain 'id' and 'name' columns.")

        for row in reader:
            try:
                template_id = int(row["id"])
                anchor = _read_rect(row, ANCHOR_COLUMNS)
                region = _read_rect(row, ROI_COLUMNS)
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Invalid template row: {row}") from exc

            if template_id in seen:
                raise ValueError(f"Duplicate template id {template_id} in {manifest_path}")
            seen.add(template_id)

            image_path = model_dir / row["name"].strip()
            if not image_path.exists():
                raise FileNotFoundError(f"Template image not found: {image_path}")

            entries.append(TemplateEntry(template_id=template_id, image_path=image_path, anchor=anchor, region=region))

    return entries


def _load_records(csv_path: Path, images_dir: Path) -> List[GroundTruthRecord]:
    records: List[GroundTruthRecord] = []
    with csv_path.open(newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None:
            raise ValueError("CSV file must include a header row.")

        supports_name = "name" in reader.fieldnames
        supports_path = "path" in reader.fieldnames
        if not supports_name and not supports_path:
            raise ValueError("CSV header must contain either 'name' or 'path' columns.")

        for row in reader:
            try:
                template_id = int(row["template_id"])
                box = tuple(int(float(row[column])) for column in ("x", "y", "width", "height"))
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Invalid numeric values in row: {row}") from exc

            if supports_name and row.get("name"):
                relative = row["name"].strip()
                image_path = images_dir / relative
                name = relative
            elif supports_path and row.get("path"):
                raw_path = Path(row["path"].strip())
                image_path = raw_path if raw_path.is_absolute() else images_dir / raw_path
                name = image_path.name
            else:
                raise ValueError(f"Row missing image reference: {row}")

            if not image_path.exists():
                raise FileNotFoundError(f"Image referenced in CSV missing: {image_path}")

            records.append(GroundTruthRecord(name=name, template_id=template_id, box=box, image_path=image_path))

    return records


__all__ = [
    "DetectionDataset",
    "GroundTruthRecord",
    "TemplateEntry",
    "load_detection_dataset",
    "load_template_inputs",
]
