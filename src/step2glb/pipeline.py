"""STEP to GLB export pipeline.

Writes one GLB for the whole assembly and one GLB per leaf component. The
assembly shares one material palette across its top-level components so
every part keeps its own color; each leaf component gets its own palette.
Repeated instances of the same prototype are meshed once per run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import structlog

from glbscene.accumulator import AccumulationReport, accumulate_shape
from glbscene.buckets import BucketSet, Color, EdgeBucket, ExportStats, MaterialPalette, TriangleBucket
from glbscene.builder import ExportError, GlbBuilder
from glbscene.reader import GlbFormatError, read_glb, validate_glb
from kernel.occt_io import Component, StepDocument, load_step
from kernel.tessellation import TessellationError, tessellate

from .config import ExportSettings

logger = structlog.get_logger(__name__)

Tessellator = Callable[..., Any]


@dataclass
class CachedMesh:
    """Buckets and palette produced for one prototype."""

    triangle_buckets: List[TriangleBucket]
    edge_buckets: List[EdgeBucket]
    materials: Tuple[Color, ...]


@dataclass
class ExportResult:
    """Outcome of writing one GLB file."""

    name: str
    output_path: Path
    stats: Optional[ExportStats] = None
    error: Optional[str] = None
    from_cache: bool = False
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and not self.problems


@dataclass
class PipelineResult:
    """All files written for one STEP input."""

    source: str
    assembly: Optional[ExportResult] = None
    components: List[ExportResult] = field(default_factory=list)

    @property
    def results(self) -> List[ExportResult]:
        head = [self.assembly] if self.assembly is not None else []
        return head + self.components

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


def mesh_into(
    shape: Any,
    color: Tuple[float, float, float, float],
    palette: MaterialPalette,
    buckets: BucketSet,
    settings: ExportSettings,
    tessellator: Tessellator = tessellate,
) -> AccumulationReport:
    """Tessellate ``shape`` and accumulate it into ``buckets``."""
    meshed = tessellator(
        shape,
        linear_deflection=settings.linear_deflection,
        angular_deflection=settings.angular_deflection,
        parallel=settings.parallel_meshing,
    )
    return accumulate_shape(
        meshed,
        Color(*color),
        palette,
        buckets,
        linear_deflection=settings.linear_deflection,
        sampling=settings.edge_sampling,
        default_color=Color(*settings.default_color),
    )


def write_container(builder: GlbBuilder, name: str, path: Path, settings: ExportSettings) -> ExportResult:
    """Write ``builder`` to ``path``; failures are recorded, not raised."""
    result = ExportResult(name=name, output_path=path)
    try:
        result.stats = builder.write(path, print_stats=settings.print_stats)
    except ExportError as e:
        result.error = str(e)
        logger.error("GLB export failed", name=name, path=str(path), error=str(e))
        return result

    if settings.validate:
        try:
            result.problems = validate_glb(read_glb(path))
        except GlbFormatError as e:
            result.problems = [str(e)]
        for problem in result.problems:
            logger.warning("GLB validation problem", path=str(path), problem=problem)

    return result


def export_assembly(
    document: StepDocument,
    output_dir: Path,
    settings: ExportSettings,
    tessellator: Tessellator = tessellate,
) -> ExportResult:
    """One GLB holding every top-level component with a shared palette."""
    output_path = output_dir / f"out_{document.root_path}_1.glb"
    components = document.assembly_components()
    if not components:
        logger.error("No components found for assembly", source=document.file_path)
        return ExportResult(name="assembly", output_path=output_path, error="No components found")

    logger.info("Exporting assembly", components=len(components), path=str(output_path))

    palette = MaterialPalette()
    buckets = BucketSet()
    for component in components:
        try:
            mesh_into(component.shape, component.color, palette, buckets, settings, tessellator)
        except TessellationError as e:
            logger.warning("Skipping component in assembly", component=component.label_path, error=str(e))

    if not buckets.has_geometry():
        logger.error("Assembly produced no geometry", source=document.file_path)
        return ExportResult(name="assembly", output_path=output_path, error="No geometry to write")

    builder = GlbBuilder()
    builder.add_buckets(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())
    return write_container(builder, "assembly", output_path, settings)


def export_component(
    component: Component,
    output_dir: Path,
    settings: ExportSettings,
    cache: Dict[str, CachedMesh],
    tessellator: Tessellator = tessellate,
) -> ExportResult:
    """One GLB for a single leaf component, reusing cached prototype meshes."""
    output_path = output_dir / f"out_{component.prototype_path}_1.glb"

    mesh = cache.get(component.prototype_path)
    from_cache = mesh is not None
    if mesh is None:
        palette = MaterialPalette()
        buckets = BucketSet()
        try:
            mesh_into(component.shape, component.color, palette, buckets, settings, tessellator)
        except TessellationError as e:
            logger.error("Component tessellation failed", component=component.label_path, error=str(e))
            return ExportResult(name=component.name, output_path=output_path, error=str(e))
        mesh = CachedMesh(buckets.triangle_buckets(), buckets.edge_buckets(), palette.snapshot())
        cache[component.prototype_path] = mesh

    logger.info(
        "Exporting component",
        component=component.label_path,
        prototype=component.prototype_path,
        from_cache=from_cache,
    )

    builder = GlbBuilder()
    builder.add_buckets(mesh.triangle_buckets, mesh.edge_buckets, mesh.materials)
    result = write_container(builder, component.name, output_path, settings)
    result.from_cache = from_cache
    return result


def export_document(
    document: StepDocument,
    settings: ExportSettings,
    tessellator: Tessellator = tessellate,
) -> PipelineResult:
    """Export the assembly GLB and, unless disabled, one GLB per leaf."""
    output_dir = Path(settings.output_dir) if settings.output_dir else Path(document.file_path).parent
    output_dir.mkdir(parents=True, exist_ok=True)

    result = PipelineResult(source=document.file_path)
    logger.info("Exporting model", model=document.model_id, output_dir=str(output_dir))
    result.assembly = export_assembly(document, output_dir, settings, tessellator)

    if settings.assembly_only:
        return result

    leaves = document.leaf_components()
    logger.info("Exporting leaf components", count=len(leaves))

    cache: Dict[str, CachedMesh] = {}
    for component in leaves:
        result.components.append(export_component(component, output_dir, settings, cache, tessellator))

    logger.info(
        "Export finished",
        model=document.model_id,
        succeeded=result.succeeded,
        failed=result.failed,
    )
    return result


def export_step(
    path: Union[str, Path],
    settings: Optional[ExportSettings] = None,
    tessellator: Tessellator = tessellate,
) -> PipelineResult:
    """Load a STEP file and export it.

    Raises:
        StepImportError: If the STEP file cannot be read
        OCCTNotAvailableError: If pythonocc-core is not installed
    """
    settings = settings or ExportSettings()
    document = load_step(path)
    return export_document(document, settings, tessellator)
