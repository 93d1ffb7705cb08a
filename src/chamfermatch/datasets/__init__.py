"""
Dataset helpers for detection benchmarks.
"""

from .detection_dataset import (
    DetectionDataset,
    GroundTruthRecord,
    TemplateEntry,
    load_detection_dataset,
    load_template_inputs,
)

__all__ = [
    "DetectionDataset",
    "GroundTruthRecord",
    "TemplateEntry",
    "load_detection_dataset",
    "load_template_inputs",
]
