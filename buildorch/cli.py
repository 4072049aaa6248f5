"""
buildorch CLI.

Command-line surface of the orchestrator. Option spellings follow the build
system that invokes it (`--soong_out`, `-l`, `--bp2build_marker`...).
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from .core.config import BuildFlags, get_settings
from .core.exceptions import BuildOrchError
from .core.logging import setup_logging
from .core.types import RunRecord
from .services.globs import glob_list_contents, match_glob
from .services.mode_selector import select_mode
from .storage import LocalWorkspace

app = typer.Typer(
    name="buildorch",
    help="Build-mode orchestration with incremental invalidation",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from . import __version__
        console.print(f"buildorch v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """buildorch: turn module declarations into build graphs and bazel workspaces."""
    pass


ModuleGraphFile = typer.Option("", "--module_graph_file", help="JSON module graph file to output")
DocFile = typer.Option("", "--soong_docs", help="Build documentation file to output")
QueryViewDir = typer.Option("", "--bazel_queryview_dir", help="Path to the bazel queryview directory relative to --top")
ApiBp2buildDir = typer.Option("", "--bazel_api_bp2build_dir", help="Path to the bazel api_bp2build directory relative to --top")
Bp2buildMarker = typer.Option("", "--bp2build_marker", help="If set, run bp2build, touch the specified marker file then exit")
BazelMode = typer.Option(False, "--bazel-mode", help="Use bazel for analysis of certain modules")
BazelModeStaging = typer.Option(False, "--bazel-mode-staging", help="Use bazel for analysis of certain near-ready modules")
BazelModeDev = typer.Option(False, "--bazel-mode-dev", help="Use bazel for analysis of a large number of modules (less stable)")


@app.command()
def run(
    top_dir: str = typer.Option("", "--top", help="Top directory of the source tree"),
    soong_out_dir: str = typer.Option("", "--soong_out", help="Tool output directory (usually $TOP/out/soong)"),
    available_env_file: str = typer.Option("", "--available_env", help="File containing available environment variables"),
    used_env_file: str = typer.Option("", "--used_env", help="File containing used environment variables"),
    glob_file: str = typer.Option("build-globs.ninja", "--globFile", help="The Ninja file of globs to output"),
    glob_list_dir: str = typer.Option("", "--globListDir", help="The directory containing the glob list files"),
    out_dir: str = typer.Option("", "--out", help="The ninja builddir directory"),
    module_list_file: str = typer.Option("", "-l", help="File that lists filepaths to parse"),
    out_file: str = typer.Option("build.ninja", "-o", help="The Ninja file to output"),
    module_graph_file: str = ModuleGraphFile,
    module_actions_file: str = typer.Option("", "--module_actions_file", help="JSON file to output inputs/outputs of actions of modules"),
    doc_file: str = DocFile,
    bazel_queryview_dir: str = QueryViewDir,
    bazel_api_bp2build_dir: str = ApiBp2buildDir,
    bp2build_marker: str = Bp2buildMarker,
    empty_ninja_file: bool = typer.Option(False, "--empty-ninja-file", help="Write out a 0-byte ninja file"),
    bazel_mode: bool = BazelMode,
    bazel_mode_staging: bool = BazelModeStaging,
    bazel_mode_dev: bool = BazelModeDev,
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging and print a phase summary"),
) -> None:
    """Run one build-generation pass in the mode the options select."""
    settings = get_settings()
    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    setup_logging(settings)

    flags = BuildFlags(
        top_dir=top_dir,
        soong_out_dir=soong_out_dir,
        out_dir=out_dir,
        available_env_file=available_env_file,
        used_env_file=used_env_file,
        glob_file=glob_file,
        glob_list_dir=glob_list_dir,
        module_list_file=module_list_file,
        out_file=out_file,
        module_graph_file=module_graph_file,
        module_actions_file=module_actions_file,
        doc_file=doc_file,
        bazel_queryview_dir=bazel_queryview_dir,
        bazel_api_bp2build_dir=bazel_api_bp2build_dir,
        bp2build_marker=bp2build_marker,
        empty_ninja_file=empty_ninja_file,
        bazel_mode=bazel_mode,
        bazel_mode_staging=bazel_mode_staging,
        bazel_mode_dev=bazel_mode_dev,
    )

    from .orchestration import RunOrchestrator

    orchestrator = RunOrchestrator(flags, settings=settings)
    try:
        record = orchestrator.run()
    except BuildOrchError as e:
        err_console.print(f"error: {e}", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(1)

    if verbose:
        _print_summary(record)


def _print_summary(record: RunRecord) -> None:
    table = Table(title=f"Run {record.run_id}")
    table.add_column("Phase", style="cyan")
    table.add_column("Status")
    table.add_column("Seconds", justify="right")
    for phase in record.phases:
        table.add_row(phase.name, phase.status.value, f"{phase.duration_seconds:.3f}")
    err_console.print(table)
    err_console.print(f"[bold]Mode:[/bold] {record.mode.value if record.mode else '-'}")
    err_console.print(f"[bold]Output:[/bold] {record.output_file}")
    err_console.print(f"[bold]Dependencies:[/bold] {record.dependency_count}")


@app.command()
def mode(
    module_graph_file: str = ModuleGraphFile,
    doc_file: str = DocFile,
    bazel_queryview_dir: str = QueryViewDir,
    bazel_api_bp2build_dir: str = ApiBp2buildDir,
    bp2build_marker: str = Bp2buildMarker,
    bazel_mode: bool = BazelMode,
    bazel_mode_staging: bool = BazelModeStaging,
    bazel_mode_dev: bool = BazelModeDev,
) -> None:
    """Print the build mode the given options select, without running anything."""
    flags = BuildFlags(
        module_graph_file=module_graph_file,
        doc_file=doc_file,
        bazel_queryview_dir=bazel_queryview_dir,
        bazel_api_bp2build_dir=bazel_api_bp2build_dir,
        bp2build_marker=bp2build_marker,
        bazel_mode=bazel_mode,
        bazel_mode_staging=bazel_mode_staging,
        bazel_mode_dev=bazel_mode_dev,
    )
    typer.echo(select_mode(flags).value)


@app.command("glob")
def glob_command(
    pattern: str = typer.Argument(..., help="Glob pattern, relative to --top"),
    output: str = typer.Option(..., "-o", help="List file to write the matches to"),
    top_dir: str = typer.Option("", "--top", help="Top directory of the source tree"),
) -> None:
    """Re-evaluate one glob and rewrite its list file if the matches changed."""
    setup_logging(get_settings())
    result = match_glob(top_dir, pattern)
    try:
        LocalWorkspace(top_dir).write_if_changed(output, glob_list_contents(result.matches))
    except BuildOrchError as e:
        err_console.print(f"error: {e}", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
