"""
IO helpers for image assets and persisted template data.
"""

from .image_loader import load_grayscale, load_image
from .template_store import TemplateRecord, read_template_data, write_template_data

__all__ = ["TemplateRecord", "load_grayscale", "load_image", "read_template_data", "write_template_data"]
