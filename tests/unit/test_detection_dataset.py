from __future__ import annotations

import csv
from pathlib import Path

import cv2
import numpy as np
import pytest

from chamfermatch.datasets import load_detection_dataset, load_template_inputs
from chamfermatch.io import load_image


def make_layout(root: Path) -> tuple[Path, Path, Path]:
    imgs_dir = root / "imgs"
    csv_dir = root / "csv"
    model_dir = root / "model"
    imgs_dir.mkdir(parents=True)
    csv_dir.mkdir()
    model_dir.mkdir()
    return imgs_dir, csv_dir, model_dir


def write_rows(path: Path, rows: list[list[str]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerows(rows)


def test_load_detection_dataset_with_name_column(tmp_path: Path) -> None:
    root = tmp_path / "dataset"
    imgs_dir, csv_dir, model_dir = make_layout(root)

    sample_template = np.full((16, 16), 255, dtype=np.uint8)
    cv2.circle(sample_template, (8, 8), 6, 0, thickness=-1)
    cv2.imwrite(str(model_dir / "circle.png"), sample_template)

    image = np.full((32, 32), 255, dtype=np.uint8)
    cv2.circle(image, (18, 20), 6, 0, thickness=-1)
    cv2.imwrite(str(imgs_dir / "frame0.png"), image)

    write_rows(
        csv_dir / "templates.csv",
        [
            ["id", "name", "anchor_x", "anchor_y", "anchor_width", "anchor_height", "roi_x", "roi_y", "roi_width", "roi_height"],
            ["4", "circle.png", "10", "12", "16", "16", "", "", "", ""],
        ],
    )
    write_rows(
        csv_dir / "result0.csv",
        [
            ["name", "template_id", "x", "y", "width", "height"],
            ["frame0.png", "4", "10.0", "12.0", "16", "16"],
        ],
    )

    dataset = load_detection_dataset(root=root)

    assert dataset.root == root
    assert len(dataset.templates) == 1
    entry = dataset.templates[0]
    assert entry.template_id == 4
    assert entry.image_path == model_dir / "circle.png"
    assert entry.anchor == (10, 12, 16, 16)
    assert entry.region == (0, 0, 0, 0)

    assert len(dataset.records) == 1
    record = dataset.records[0]
    assert record.image_path.exists()
    assert record.name == "frame0.png"
    assert record.template_id == 4
    assert record.box == (10, 12, 16, 16)

    images, regions = load_template_inputs(dataset)
    assert list(images) == [4]
    assert images[4].shape == (16, 16)
    assert regions[4] == ((10, 12, 16, 16), (0, 0, 0, 0))


def test_load_detection_dataset_with_path_column(tmp_path: Path) -> None:
    root = tmp_path / "dataset"
    imgs_dir, csv_dir, model_dir = make_layout(root)

    (model_dir / "template.png").write_bytes(b"binary")
    absolute_image_path = imgs_dir / "frame0.png"
    absolute_image_path.write_bytes(b"img")

    write_rows(csv_dir / "templates.csv", [["id", "name"], ["1", "template.png"]])
    write_rows(
        csv_dir / "result0.csv",
        [
            ["path", "template_id", "x", "y", "width", "height"],
            [str(absolute_image_path), "1", "1.0", "2.0", "3", "4"],
        ],
    )

    dataset = load_detection_dataset(root=root)

    assert dataset.templates[0].anchor == (0, 0, 0, 0)
    record = dataset.records[0]
    assert record.image_path == absolute_image_path
    assert record.name == "frame0.png"
    assert record.box == (1, 2, 3, 4)


def test_duplicate_template_ids_are_rejected(tmp_path: Path) -> None:
    root = tmp_path / "dataset"
    imgs_dir, csv_dir, model_dir = make_layout(root)
    (model_dir / "a.png").write_bytes(b"a")
    (imgs_dir / "frame0.png").write_bytes(b"img")

    write_rows(csv_dir / "templates.csv", [["id", "name"], ["1", "a.png"], ["1", "a.png"]])
    write_rows(
        csv_dir / "result0.csv",
        [["name", "template_id", "x", "y", "width", "height"], ["frame0.png", "1", "0", "0", "1", "1"]],
    )

    with pytest.raises(ValueError):
        load_detection_dataset(root=root)


def test_missing_folders_are_reported(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_detection_dataset(root=tmp_path / "absent")


def test_unreadable_image_raises(tmp_path: Path) -> None:
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")

    with pytest.raises(FileNotFoundError):
        load_image(path)
