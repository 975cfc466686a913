"""STEP assembly import through Open CASCADE XDE.

Reads a STEP file with names and colors into an XCAF document and exposes
its components: the top-level ones used for the assembly export and the
leaf ones exported individually.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_GRAY = (0.7, 0.7, 0.7, 1.0)


class StepImportError(Exception):
    """Raised when STEP file import fails."""

    pass


class OCCTNotAvailableError(Exception):
    """Raised when no OCCT binding is available."""

    pass


def get_occt_info() -> Dict[str, Any]:
    """Get information about available OCCT bindings.

    Returns:
        Dictionary with binding availability and version info
    """
    info: Dict[str, Any] = {
        "pythonOCC_available": False,
        "OCP_available": False,
        "recommended_binding": None,
        "occt_version": None,
    }

    try:
        import OCC
        import OCC.Core  # noqa: F401

        info["pythonOCC_available"] = True
        info["recommended_binding"] = "pythonOCC"
        info["occt_version"] = getattr(OCC, "VERSION", getattr(OCC, "__version__", "unknown"))
        logger.info("pythonocc-core binding detected")
    except ImportError:
        logger.debug("pythonocc-core not available")

    try:
        import OCP  # noqa: F401

        # Detected for reporting only; export needs OCC.Core
        info["OCP_available"] = True
        logger.info("OCP binding detected")
    except ImportError:
        logger.debug("OCP not available")

    return info


def _validate_step_file(file_path: str | Path) -> Path:
    """Validate STEP file exists and is readable.

    Raises:
        StepImportError: If file validation fails
    """
    path = Path(file_path).resolve()

    if not path.exists():
        raise StepImportError(f"STEP file not found: {path}")

    if not path.is_file():
        raise StepImportError(f"Path is not a file: {path}")

    if path.stat().st_size == 0:
        raise StepImportError(f"STEP file is empty: {path}")

    with open(path, encoding="utf-8", errors="ignore") as f:
        header = f.read(1024)
    if not header.startswith("ISO-10303-"):
        logger.warning("File does not start with ISO-10303 header", file=str(path))

    return path


def label_path_for_filename(entry: str) -> str:
    """Label entry to a filename-safe token ("0:1:1:2" -> "0-1-1-2")."""
    return entry.replace(":", "-")


@dataclass
class Component:
    """One shape to export, with its resolved color."""

    label_path: str
    name: str
    shape: Any  # TopoDS_Shape
    color: Tuple[float, float, float, float]
    prototype_path: str
    is_instance: bool = False


@dataclass
class StepDocument:
    """An XCAF document loaded from a STEP file."""

    file_path: str
    document: Any
    shape_tool: Any
    color_tool: Any
    roots: List[Any] = field(default_factory=list)

    @property
    def model_id(self) -> str:
        return Path(self.file_path).stem

    @property
    def root_path(self) -> str:
        return label_path_for_filename(_entry(self.roots[0])) if self.roots else "0"

    def _component(self, label: Any) -> Optional[Component]:
        shape = self.shape_tool.GetShape(label)
        if shape is None or shape.IsNull():
            return None
        referred = _referred_label(self.shape_tool, label)
        naming = referred if referred is not None else label
        return Component(
            label_path=label_path_for_filename(_entry(label)),
            name=_label_name(label),
            shape=shape,
            color=resolve_color(label, self.shape_tool, self.color_tool),
            prototype_path=label_path_for_filename(_entry(naming)),
            is_instance=referred is not None,
        )

    def assembly_components(self) -> List[Component]:
        """Components one level below the free roots.

        A root without children is returned itself.
        """
        labels = []
        for root in self.roots:
            children = _components_of(self.shape_tool, root, deep=False)
            labels.extend(children or [root])
        return [c for c in map(self._component, labels) if c is not None]

    def leaf_components(self) -> List[Component]:
        """Leaf components at any depth, de-duplicated by label entry.

        Falls back to the roots when the document has no components.
        """
        seen = set()
        labels = []
        for root in self.roots:
            for label in _components_of(self.shape_tool, root, deep=True):
                entry = _entry(label)
                if entry in seen:
                    continue
                seen.add(entry)
                if _components_of(self.shape_tool, label, deep=False):
                    continue
                labels.append(label)
        if not labels:
            labels = list(self.roots)
        return [c for c in map(self._component, labels) if c is not None]


def _sequence_to_list(sequence: Any) -> List[Any]:
    return [sequence.Value(i) for i in range(1, sequence.Length() + 1)]


def _entry(label: Any) -> str:
    from OCC.Core.TCollection import TCollection_AsciiString
    from OCC.Core.TDF import TDF_Tool

    entry = TCollection_AsciiString()
    TDF_Tool.Entry(label, entry)
    return entry.ToCString()


def _label_name(label: Any) -> str:
    try:
        name = label.GetLabelName()
    except Exception:
        name = ""
    return name or "(unnamed)"


def _components_of(shape_tool: Any, label: Any, deep: bool) -> List[Any]:
    from OCC.Core.TDF import TDF_LabelSequence

    children = TDF_LabelSequence()
    shape_tool.GetComponents(label, children, deep)
    return _sequence_to_list(children)


def _referred_label(shape_tool: Any, label: Any) -> Optional[Any]:
    from OCC.Core.TDF import TDF_Label

    referred = TDF_Label()
    if shape_tool.GetReferredShape(label, referred):
        return referred
    return None


def _label_color(color_tool: Any, label: Any) -> Optional[Any]:
    from OCC.Core.Quantity import Quantity_Color
    from OCC.Core.XCAFDoc import XCAFDoc_ColorCurv, XCAFDoc_ColorGen, XCAFDoc_ColorSurf

    color = Quantity_Color()
    for kind in (XCAFDoc_ColorSurf, XCAFDoc_ColorGen, XCAFDoc_ColorCurv):
        if color_tool.GetColor(label, kind, color):
            return color
    return None


def effective_color(label: Any, shape_tool: Any, color_tool: Any) -> Optional[Any]:
    """Color set on the instance, its prototype, or the label of its shape."""
    if color_tool is None:
        return None

    color = _label_color(color_tool, label)
    if color is not None:
        return color

    referred = _referred_label(shape_tool, label)
    if referred is not None:
        color = _label_color(color_tool, referred)
        if color is not None:
            return color

    from OCC.Core.TDF import TDF_Label

    shape = shape_tool.GetShape(label)
    if shape is not None and not shape.IsNull():
        shape_label = TDF_Label()
        if shape_tool.Search(shape, shape_label):
            return _label_color(color_tool, shape_label)
    return None


def resolve_color(
    label: Any,
    shape_tool: Any,
    color_tool: Any,
    default: Tuple[float, float, float, float] = DEFAULT_GRAY,
) -> Tuple[float, float, float, float]:
    """RGBA for ``label``, ``default`` when no color is assigned."""
    color = effective_color(label, shape_tool, color_tool)
    if color is None:
        return default
    return (float(color.Red()), float(color.Green()), float(color.Blue()), 1.0)


def load_step(file_path: str | Path) -> StepDocument:
    """Load a STEP file with colors and names into an XCAF document.

    Args:
        file_path: Path to the STEP file

    Returns:
        StepDocument with the free root labels

    Raises:
        StepImportError: If file validation or import fails
        OCCTNotAvailableError: If pythonocc-core is not installed
    """
    validated_path = _validate_step_file(file_path)

    try:
        from OCC.Core.IFSelect import IFSelect_RetDone
        from OCC.Core.STEPCAFControl import STEPCAFControl_Reader
        from OCC.Core.TDF import TDF_LabelSequence
        from OCC.Core.TDocStd import TDocStd_Document
        from OCC.Core.XCAFDoc import XCAFDoc_DocumentTool
    except ImportError as e:
        raise OCCTNotAvailableError(
            "No OCCT Python binding available. "
            "Please install pythonocc-core:\n"
            "  conda install -c conda-forge pythonocc-core"
        ) from e

    logger.info("Loading STEP file", file=str(validated_path))

    try:
        document = TDocStd_Document("MDTV-XCAF")
        shape_tool = XCAFDoc_DocumentTool.ShapeTool(document.Main())
        color_tool = XCAFDoc_DocumentTool.ColorTool(document.Main())

        reader = STEPCAFControl_Reader()
        reader.SetColorMode(True)
        reader.SetNameMode(True)

        status = reader.ReadFile(str(validated_path))
        if status != IFSelect_RetDone:
            raise StepImportError(f"STEP read failed with status: {status}")

        if not reader.Transfer(document):
            raise StepImportError("STEP transfer into XCAF document failed")

        free_shapes = TDF_LabelSequence()
        shape_tool.GetFreeShapes(free_shapes)
        roots = _sequence_to_list(free_shapes)
    except StepImportError:
        raise
    except Exception as e:
        raise StepImportError(f"Failed to load STEP file: {e}") from e

    if not roots:
        raise StepImportError("No shapes found in STEP file")

    logger.info("Successfully loaded STEP file", file=str(validated_path), roots=len(roots))

    return StepDocument(
        file_path=str(validated_path),
        document=document,
        shape_tool=shape_tool,
        color_tool=color_tool,
        roots=roots,
    )
