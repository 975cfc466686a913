"""step2glb CLI.

Provides command-line interface for exporting STEP assemblies to GLB and
inspecting written GLB files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from glbscene.reader import GlbFormatError, read_glb, validate_glb
from kernel.occt_io import OCCTNotAvailableError, StepImportError, get_occt_info

from .config import ExportSettings
from .logging_setup import configure_preset
from .pipeline import PipelineResult, export_step

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="step2glb",
    help="Export tessellated STEP assemblies to GLB",
    add_completion=False,
)

console = Console()


def _display_error(message: str, error: Optional[Exception] = None) -> None:
    """Display error message with styling."""
    error_text = Text(f"❌ {message}", style="bold red")
    if error:
        error_text.append(f"\n   {str(error)}", style="red")
    console.print(Panel(error_text, title="Error", border_style="red"))


def _display_success(message: str) -> None:
    """Display success message with styling."""
    success_text = Text(f"✅ {message}", style="bold green")
    console.print(Panel(success_text, title="Success", border_style="green"))


def _display_warning(message: str) -> None:
    """Display warning message with styling."""
    warning_text = Text(f"⚠️  {message}", style="bold yellow")
    console.print(Panel(warning_text, title="Warning", border_style="yellow"))


def _format_file_size(size: float) -> str:
    """Format file size in human-readable units."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """step2glb: STEP assemblies to GLB containers."""
    preset = "production" if json_logs else "development" if verbose else "cli"
    configure_preset(preset, level="DEBUG" if verbose else None)


@app.command()
def info() -> None:
    """Display OCCT binding status."""
    occt_info = get_occt_info()

    table = Table(title="OCCT Binding Status")
    table.add_column("Binding", style="cyan")
    table.add_column("Available", style="green")
    table.add_column("Version", style="yellow")

    table.add_row(
        "pythonocc-core",
        "✅" if occt_info["pythonOCC_available"] else "❌",
        str(occt_info.get("occt_version") or "N/A"),
    )
    table.add_row("OCP", "✅" if occt_info["OCP_available"] else "❌", "N/A")

    console.print(table)

    if occt_info["recommended_binding"]:
        _display_success(f"Using binding: {occt_info['recommended_binding']}")
    else:
        _display_error(
            "No usable OCCT binding",
            Exception("Install pythonocc-core to enable STEP export"),
        )


def _display_results(result: PipelineResult) -> None:
    table = Table(title="Export Results")
    table.add_column("Output", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Triangles", style="yellow", justify="right")
    table.add_column("Edges", style="yellow", justify="right")
    table.add_column("Size", style="white", justify="right")

    for item in result.results:
        if item.error:
            status = f"[red]failed: {item.error}[/red]"
        elif item.problems:
            status = f"[yellow]{len(item.problems)} problem(s)[/yellow]"
        else:
            status = "[green]ok[/green]" + (" (cached)" if item.from_cache else "")
        stats = item.stats
        table.add_row(
            item.output_path.name,
            status,
            str(stats.triangles) if stats else "-",
            str(stats.lines) if stats else "-",
            _format_file_size(stats.total_bytes) if stats else "-",
        )

    console.print(table)


@app.command()
def export(
    path: str = typer.Argument(..., help="Path to STEP file"),
    outdir: Optional[str] = typer.Option(None, "--outdir", "-o", help="Output directory"),
    stats: bool = typer.Option(False, "--stats", help="Print statistics per GLB"),
    validate: bool = typer.Option(False, "--validate", help="Re-read and validate every GLB"),
    linear_deflection: Optional[float] = typer.Option(None, "--linear-deflection", help="Tessellation chordal tolerance"),
    angular_deflection: Optional[float] = typer.Option(None, "--angular-deflection", help="Tessellation angular tolerance (rad)"),
    assembly_only: bool = typer.Option(False, "--assembly-only", help="Skip per-component GLB files"),
) -> None:
    """Export a STEP assembly and its components to GLB."""
    try:
        settings = ExportSettings().with_overrides(
            output_dir=outdir,
            print_stats=stats,
            validate=validate,
            linear_deflection=linear_deflection,
            angular_deflection=angular_deflection,
            assembly_only=assembly_only,
        )
    except ValueError as e:
        _display_error("Invalid export settings", e)
        raise typer.Exit(1)

    file_path = Path(path)
    console.print(f"🔄 Exporting STEP file: {file_path}")

    try:
        result = export_step(file_path, settings)
    except (StepImportError, OCCTNotAvailableError) as e:
        _display_error("Failed to load STEP file", e)
        raise typer.Exit(1)

    _display_results(result)

    if result.succeeded == 0:
        _display_error("No GLB file could be exported")
        raise typer.Exit(1)
    if result.failed:
        _display_warning(f"{result.failed} of {len(result.results)} export(s) failed")
    else:
        _display_success(f"Exported {result.succeeded} GLB file(s)")


@app.command()
def inspect(
    path: str = typer.Argument(..., help="Path to GLB file"),
) -> None:
    """Summarize and validate a GLB file."""
    try:
        document = read_glb(path)
    except (GlbFormatError, OSError) as e:
        _display_error("Cannot read GLB file", e)
        raise typer.Exit(1)

    primitives = document.primitives
    triangles = sum(1 for p in primitives if p.get("mode", 4) == 4)

    table = Table(title=f"GLB {Path(path).name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Version", str(document.version))
    table.add_row("Total size", _format_file_size(document.total_length))
    table.add_row("JSON chunk", _format_file_size(document.json_chunk_length))
    table.add_row("BIN chunk", _format_file_size(len(document.binary)))
    table.add_row("Materials", str(len(document.json.get("materials", []))))
    table.add_row("Triangle primitives", str(triangles))
    table.add_row("Line primitives", str(len(primitives) - triangles))
    table.add_row("Accessors", str(len(document.json.get("accessors", []))))
    table.add_row("Generator", str(document.json.get("asset", {}).get("generator", "")))
    console.print(table)

    problems = validate_glb(document)
    if problems:
        for problem in problems:
            _display_warning(problem)
        raise typer.Exit(1)
    _display_success("GLB structure is valid")


if __name__ == "__main__":
    app()
