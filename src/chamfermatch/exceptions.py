"""
Exceptions raised by the Chamfer matching package.
"""


class ChamferError(Exception):
    """Base class for errors raised by chamfermatch."""


class ConfigurationError(ChamferError, ValueError):
    """Invalid matcher configuration; the previous state is kept."""


class TemplateStoreError(ChamferError, OSError):
    """Template data file cannot be read or written."""


__all__ = ["ChamferError", "ConfigurationError", "TemplateStoreError"]
