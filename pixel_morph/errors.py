"""Exceptions raised by the solvers and image preparation."""

from __future__ import annotations


class MorphError(Exception):
    """Base class for all pixel_morph errors."""


class InvalidDimensions(MorphError, ValueError):
    """Source and target do not describe the same square grid."""


class SizeConstraintViolated(MorphError, ValueError):
    """The exact solver was given more target slots than source pixels."""
