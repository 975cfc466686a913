"""step2glb: export STEP assemblies to GLB for web viewers."""

from .config import ExportSettings
from .pipeline import ExportResult, PipelineResult, export_document, export_step

__version__ = "0.1.0"
__all__ = ["ExportSettings", "ExportResult", "PipelineResult", "export_document", "export_step"]
