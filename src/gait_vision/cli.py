"""CLI application using Typer."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="gait",
    help="Video-based gait analysis and health scoring",
    no_args_is_help=True,
)
console = Console()

# Sub-applications
config_app = typer.Typer(help="Configuration management")
models_app = typer.Typer(help="Scoring model descriptors")

app.add_typer(config_app, name="config")
app.add_typer(models_app, name="models")


def _load_settings(config_path: Optional[Path], log_level: Optional[str]):
    from gait_vision.core.config import get_settings, reload_settings
    from gait_vision.core.logging import setup_logging

    settings = reload_settings(config_path) if config_path else get_settings()
    setup_logging(settings.logging, level=log_level)
    return settings


def _print_result(extraction, scoring) -> None:
    """Print diagnostics, features and scores as Rich tables."""
    diag = extraction.diagnostics
    color = "green" if extraction.ok else "yellow"
    console.print(f"\nQuality: [{color}]{diag.quality_flag.value}[/{color}]")
    if diag.rejection_reasons:
        console.print(f"Reason: {diag.reason}")

    table = Table(title="Diagnostics")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Frames (valid/total)", f"{diag.num_frames_valid}/{diag.num_frames_total}")
    table.add_row("Detection rate", f"{diag.valid_frame_rate:.1%}")
    table.add_row("Duration", f"{diag.duration_s:.2f} s")
    table.add_row("Walking direction", diag.walking_direction + (" (mirrored)" if diag.was_flipped else ""))
    table.add_row("Step signal", diag.step_signal_mode or "-")
    table.add_row("Steps / valid strides", f"{diag.num_steps_detected} / {diag.num_strides_valid}")
    table.add_row("Cycle selection", diag.selection_reason or "-")
    console.print(table)

    if extraction.features is not None:
        table = Table(title="Gait Features")
        table.add_column("Feature", style="cyan")
        table.add_column("Value", justify="right")
        for name, value in extraction.features.to_dict().items():
            table.add_row(name, f"{value:.4f}")
        console.print(table)

    if scoring is not None and scoring.available_models():
        table = Table(title="Scores (100 = healthy)")
        table.add_column("Model", style="cyan")
        table.add_column("Score", justify="right")
        for name, value in scoring.to_dict().items():
            table.add_row(name, "-" if value is None else f"{value:.1f}")
        console.print(table)


# ============================================================================
# Config commands
# ============================================================================


@config_app.command("show")
def config_show():
    """Show current configuration."""
    from gait_vision.core.config import get_settings

    data = get_settings().to_dict()

    console.print("[bold]Current Configuration[/bold]\n")

    for section, values in data.items():
        console.print(f"[cyan]{section}:[/cyan]")
        if isinstance(values, dict):
            for key, value in values.items():
                console.print(f"  {key}: {value}")
        else:
            console.print(f"  {values}")
        console.print()


@config_app.command("init")
def config_init(
    path: Annotated[Path, typer.Option("--path", "-p", help="Config file path")] = Path(
        "config/settings.yaml"
    ),
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite without asking")] = False,
):
    """Write a configuration file with default values."""
    from gait_vision.core.config import Settings

    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Abort()

    Settings().to_yaml(path)
    console.print(f"[green]Created config at {path}[/green]")


# ============================================================================
# Analysis commands
# ============================================================================


@app.command("analyze")
def analyze(
    video_path: Annotated[Path, typer.Argument(help="Video file path")],
    participant: Annotated[str, typer.Option("--participant", "-p", help="Participant ID")] = "",
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Append the result row to this CSV")
    ] = None,
    signals: Annotated[
        Optional[Path], typer.Option("--signals", help="Write per-frame signals CSV")
    ] = None,
    plot: Annotated[
        Optional[Path], typer.Option("--plot", help="Save a signal plot (requires matplotlib)")
    ] = None,
    no_roi: Annotated[bool, typer.Option("--no-roi", help="Disable the ROI retry pass")] = False,
    config_path: Annotated[Optional[Path], typer.Option("--config", "-c", help="Settings YAML")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level")] = None,
):
    """Analyze a walking video."""
    from gait_vision.core.exceptions import GaitVisionError
    from gait_vision.pipeline.video import AnalysisContext, VideoAnalysisPipeline
    from gait_vision.report.export import write_feature_csv, write_signals_csv

    if not video_path.exists():
        console.print(f"[red]Video not found: {video_path}[/red]")
        raise typer.Exit(1)

    settings = _load_settings(config_path, log_level)
    if no_roi:
        settings.pipeline.enable_roi_retry = False

    pipeline = VideoAnalysisPipeline(settings)
    context = AnalysisContext(video_id=video_path.stem, participant_id=participant)

    try:
        with console.status(f"Analyzing {video_path.name}..."):
            result = pipeline.analyze(video_path, context)
    except (GaitVisionError, ImportError, ValueError) as e:
        console.print(f"[red]Analysis failed: {e}[/red]")
        raise typer.Exit(1)

    _print_result(result.extraction, result.scoring)
    if result.used_roi:
        console.print("[dim]Result taken from the ROI-tracked pass[/dim]")

    if output:
        write_feature_csv(
            output,
            result.diagnostics,
            result.features,
            result.scoring,
            participant_id=participant,
            video_name=video_path.name,
            append=True,
        )
        console.print(f"[green]Appended result to: {output}[/green]")

    if signals and result.extraction.signals is not None:
        write_signals_csv(signals, result.extraction.signals)
        console.print(f"[green]Signals saved to: {signals}[/green]")

    if plot:
        from gait_vision.visualization.plots import plot_gait_signals

        if plot_gait_signals(result.extraction, title=video_path.stem, save_path=plot) is None:
            console.print("[yellow]matplotlib not installed, plot skipped[/yellow]")
        else:
            console.print(f"[green]Plot saved to: {plot}[/green]")


@app.command("extract")
def extract(
    poses_json: Annotated[Path, typer.Argument(help="Pose sequence JSON")],
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Append the result row to this CSV")
    ] = None,
    participant: Annotated[str, typer.Option("--participant", "-p", help="Participant ID")] = "",
    score: Annotated[bool, typer.Option("--score/--no-score", help="Run scoring models")] = True,
    config_path: Annotated[Optional[Path], typer.Option("--config", "-c", help="Settings YAML")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level")] = None,
):
    """Extract gait features from a saved pose sequence."""
    from gait_vision.models.scorer import GaitScorer, ScoringResult
    from gait_vision.pipeline.extractors.pose import load_pose_sequence
    from gait_vision.pipeline.video import VideoAnalysisPipeline
    from gait_vision.report.export import write_feature_csv

    settings = _load_settings(config_path, log_level)

    try:
        seq = load_pose_sequence(poses_json)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    scorer = GaitScorer.from_directory(config=settings.scoring) if score else GaitScorer()
    result = VideoAnalysisPipeline(settings, scorer=scorer).analyze_sequence(seq)
    scoring = result.scoring if score else ScoringResult()
    _print_result(result.extraction, scoring)

    if output:
        write_feature_csv(
            output,
            result.diagnostics,
            result.features,
            scoring,
            participant_id=participant,
            video_name=poses_json.name,
            append=True,
        )
        console.print(f"[green]Appended result to: {output}[/green]")


# ============================================================================
# Model commands
# ============================================================================


@models_app.command("fit")
def models_fit(
    features_csv: Annotated[Path, typer.Argument(help="Features CSV (as written by analyze)")],
    output_dir: Annotated[Path, typer.Option("--output-dir", "-o", help="Descriptor directory")] = Path(
        "models"
    ),
    target: Annotated[
        Optional[str], typer.Option("--target", "-t", help="Column with the ridge regression target")
    ] = None,
):
    """Fit AE, PCA and (with a target) Ridge descriptors from a feature table."""
    from gait_vision.core.config import get_settings
    from gait_vision.models.training import fit_descriptors, load_feature_table

    try:
        X, y = load_feature_table(features_csv, target_column=target)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"Loaded {X.shape[0]} usable rows")
    if X.shape[0] < 2:
        console.print("[red]Need at least two usable rows[/red]")
        raise typer.Exit(1)

    with console.status("Fitting models..."):
        written = fit_descriptors(X, output_dir, y=y, scoring=get_settings().scoring)

    table = Table(title="Descriptors")
    table.add_column("Model", style="cyan")
    table.add_column("Path")
    for slot, path in written.items():
        table.add_row(slot, str(path))
    console.print(table)


@models_app.command("list")
def models_list(
    models_dir: Annotated[Optional[Path], typer.Option("--dir", "-d", help="Descriptor directory")] = None,
):
    """Show which scoring models load from the descriptor directory."""
    from gait_vision.core.config import get_settings
    from gait_vision.models.scorer import GaitScorer

    scorer = GaitScorer.from_directory(models_dir, config=get_settings().scoring)
    available = scorer.available_models

    table = Table(title="Scoring Models")
    table.add_column("Model", style="cyan")
    table.add_column("Status")
    for name in ("ae", "ridge", "pca"):
        status = "[green]loaded[/green]" if name in available else "[yellow]unavailable[/yellow]"
        table.add_row(name, status)
    console.print(table)


# ============================================================================
# Main entry point
# ============================================================================


@app.callback()
def main():
    """Video-based gait analysis and health scoring."""
    pass


if __name__ == "__main__":
    app()
