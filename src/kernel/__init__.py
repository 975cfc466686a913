"""Kernel package for CAD geometry access.

This package provides STEP assembly import and tessellation using
Open CASCADE Technology (pythonocc-core).
"""

from .occt_io import (
    Component, OCCTNotAvailableError, StepDocument, StepImportError, get_occt_info, load_step,
)
from .tessellation import OccTessellatedShape, TessellationError, tessellate

__version__ = "0.1.0"
__all__ = [
    "Component", "OCCTNotAvailableError", "StepDocument", "StepImportError",
    "get_occt_info", "load_step",
    "OccTessellatedShape", "TessellationError", "tessellate",
]
