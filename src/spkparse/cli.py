#!/usr/bin/env python3
"""spkparse command-line interface.

Usage::

    spkparse header de436.bsp
    spkparse bodies de436.bsp
    spkparse segments de436.bsp
    spkparse state de436.bsp --target 399 --center 3 --et 0
    spkparse sample de436.bsp -t 301 -c 3 --step 3600 --output moon.csv
    spkparse coverage de436.bsp --output coverage.png
"""
from __future__ import annotations

import sys
import logging
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from .config import DecoderOptions
from .errors import SpkError
from .kernel import SpkKernel, Segment, sample_times
from .segment import et_to_datetime

console = Console()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--strict", is_flag=True, help="Fail on any decoding anomaly")
@click.pass_context
def main(ctx: click.Context, verbose: bool, strict: bool):
    """spkparse: inspect JPL DAF/SPK ephemeris kernels."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s — %(message)s")
    ctx.obj = DecoderOptions.strict_preset() if strict else DecoderOptions()


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def header(options: DecoderOptions, filepath: str):
    """Show the decoded file record."""
    kernel = _load(filepath, options)
    h = kernel.header
    console.print(
        Panel(
            f"[bold]{h.internal_name or 'UNNAMED'}[/bold]\n"
            f"Architecture: {h.architecture}\n"
            f"Numeric format: {h.numeric_format}\n"
            f"ND/NI: {h.n_double_precision}/{h.n_integers}\n"
            f"Directory chain: blocks {h.first_summary_block} → {h.last_summary_block}\n"
            f"First free address: {h.first_free_address}\n"
            f"Comment records: {h.comment_blocks}",
            title="File Record",
            box=box.ROUNDED,
        )
    )
    _report_errors(kernel)


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def bodies(options: DecoderOptions, filepath: str):
    """List the body catalog and gravitational parameters."""
    kernel = _load(filepath, options)
    catalog = kernel.catalog
    if catalog is None:
        _report_errors(kernel)
        sys.exit(1)

    span = (
        f"{catalog.span.start} → {catalog.span.end}" if catalog.span else "not stated"
    )
    console.print(
        Panel(
            f"[bold]{catalog.identity.name}[/bold] integrated {catalog.identity.date}\n"
            f"Span: {span}\n"
            f"Bodies: {len(catalog.bodies)}\n"
            f"GM table: {catalog.gm.lines_read} lines, "
            f"stopped ({catalog.gm.stop_reason.name.replace('_', ' ').lower()})",
            title="Kernel Catalog",
            box=box.ROUNDED,
        )
    )

    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("NAIF", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("GM (km³/s²)", justify="right")
    for body in sorted(catalog.bodies.values(), key=lambda b: b.naif_id):
        gm = (
            f"{body.gravitational_parameter:.10e}"
            if body.gm_known else "[dim]unknown[/dim]"
        )
        table.add_row(str(body.naif_id), body.name, gm)
    console.print(table)

    for warning in catalog.warnings:
        console.print(f"[yellow]{warning}[/yellow]")


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def segments(options: DecoderOptions, filepath: str):
    """List segments in directory order."""
    kernel = _load(filepath, options)
    _report_errors(kernel)

    table = Table(
        title=f"{len(kernel.segments)} segments",
        box=box.SIMPLE_HEAVY,
    )
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Target")
    table.add_column("Center")
    table.add_column("Type", justify="right")
    table.add_column("Frame", justify="right")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")

    for i, seg in enumerate(kernel.segments):
        d = seg.descriptor
        table.add_row(
            str(i),
            seg.name,
            f"{kernel.body_name(seg.target)} ({seg.target})",
            f"{kernel.body_name(seg.center)} ({seg.center})",
            str(d.data_type),
            str(d.frame_id),
            f"{et_to_datetime(d.begin_second):%Y-%m-%d}",
            f"{et_to_datetime(d.end_second):%Y-%m-%d}",
        )
    console.print(table)


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--target", "-t", required=True, type=int, help="Target NAIF id")
@click.option("--center", "-c", required=True, type=int, help="Center NAIF id")
@click.option("--et", "et", default=0.0, type=float, help="Seconds past J2000 (TDB)")
@click.pass_obj
def state(options: DecoderOptions, filepath: str, target: int, center: int, et: float):
    """Evaluate position and velocity at one time."""
    kernel = _load(filepath, options)
    segment = _select(kernel, target, center, et)

    try:
        result = kernel.state_at(segment, et)
    except SpkError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    x, y, z = result.position
    vx, vy, vz = result.velocity
    console.print(
        Panel(
            f"[bold]{kernel.body_name(target)}[/bold] relative to "
            f"{kernel.body_name(center)}\n"
            f"Epoch: {et_to_datetime(et):%Y-%m-%d %H:%M:%S} TDB ({et:.3f} s)\n"
            f"Segment: {segment.name}\n"
            f"Position (km):   {x:+.6f}  {y:+.6f}  {z:+.6f}\n"
            f"Velocity (km/s): {vx:+.9f}  {vy:+.9f}  {vz:+.9f}",
            title="State",
            box=box.ROUNDED,
        )
    )


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--target", "-t", required=True, type=int, help="Target NAIF id")
@click.option("--center", "-c", required=True, type=int, help="Center NAIF id")
@click.option("--step", "-s", default=86400.0, help="Sampling step (seconds)")
@click.option("--output", "-o", type=click.Path(), help="Save samples to CSV")
@click.option("--plot", "plot_path", type=click.Path(), help="Save a state plot (PNG)")
@click.option("--progress", is_flag=True, help="Show a progress bar")
@click.pass_obj
def sample(
    options: DecoderOptions,
    filepath: str,
    target: int,
    center: int,
    step: float,
    output: Optional[str],
    plot_path: Optional[str],
    progress: bool,
):
    """Sample a segment's state across its full coverage."""
    kernel = _load(filepath, options)
    segment = _select(kernel, target, center)

    try:
        df = kernel.sample_states(segment, sample_times(segment, step), progress=progress)
    except (SpkError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    console.print(f"Sampled {len(df)} states from {segment.name}")

    if output:
        df.to_csv(output, index=False)
        console.print(f"Results saved to {output}")

    if plot_path:
        from .viz import plot_state_history
        plot_state_history(
            df,
            title=f"{kernel.body_name(target)} relative to {kernel.body_name(center)}",
            save_path=plot_path,
        )
        console.print(f"Plot saved to {plot_path}")


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", required=True, type=click.Path(), help="PNG path")
@click.pass_obj
def coverage(options: DecoderOptions, filepath: str, output: str):
    """Plot the coverage interval of every segment."""
    from .viz import plot_segment_coverage

    kernel = _load(filepath, options)
    name = kernel.catalog.identity.name if kernel.catalog else kernel.header.internal_name
    plot_segment_coverage(
        kernel.segments_frame(),
        title=f"{name} — Segment Coverage",
        save_path=output,
    )
    console.print(f"Coverage plot saved to {output}")


@main.command()
@click.argument("filepath", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def comments(options: DecoderOptions, filepath: str):
    """Print the raw comment area."""
    kernel = _load(filepath, options)
    try:
        text = kernel.comments()
    except SpkError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    click.echo(text)


def _load(filepath: str, options: DecoderOptions) -> SpkKernel:
    try:
        return SpkKernel.open(filepath, options)
    except SpkError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)


def _select(
    kernel: SpkKernel,
    target: int,
    center: int,
    et: Optional[float] = None,
) -> Segment:
    try:
        return kernel.segment_for(target, center, et)
    except KeyError:
        console.print(
            f"[red]Error: no segment for target {target} / center {center}"
            + (f" covering {et}" if et is not None else "")
            + "[/red]"
        )
        sys.exit(1)


def _report_errors(kernel: SpkKernel) -> None:
    for component, exc in kernel.errors.items():
        console.print(f"[yellow]Could not decode {component}: {exc}[/yellow]")


if __name__ == "__main__":
    main()
