"""Plots of kernel contents: segment coverage and sampled state history.

Takes the DataFrames produced by :meth:`SpkKernel.segments_frame` and
:meth:`SpkKernel.sample_states`.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import matplotlib.dates as mdates


plt.rcParams.update({
    "figure.facecolor": "white",
    "axes.facecolor": "#fafafa",
    "axes.grid": True,
    "grid.alpha": 0.3,
    "font.family": "sans-serif",
    "font.size": 10,
})

# Segment data type colors
TYPE_COLORS = {
    2: "#2980b9",
    3: "#8e44ad",
}

AXIS_COLORS = ("#e74c3c", "#2ecc71", "#3498db")


def plot_segment_coverage(
    segments_df: pd.DataFrame,
    title: str = "Segment Coverage",
    save_path: Optional[str | Path] = None,
    figsize: tuple = (14, 6),
) -> plt.Figure:
    """Horizontal bar per segment spanning its coverage in Julian dates.

    Bars are labeled ``target -> center`` and colored by data type.
    """
    fig, ax = plt.subplots(figsize=figsize)

    if segments_df.empty:
        ax.text(0.5, 0.5, "No segments", transform=ax.transAxes,
                ha="center", va="center", fontsize=14, color="#95a5a6")
        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches="tight")
        return fig

    labels = []
    for i, (_, seg) in enumerate(segments_df.iterrows()):
        target = seg.get("target_name", seg["target"])
        center = seg.get("center_name", seg["center"])
        labels.append(f"{target} → {center}")
        ax.barh(
            i,
            seg["end_jd"] - seg["start_jd"],
            left=seg["start_jd"],
            height=0.6,
            color=TYPE_COLORS.get(int(seg["data_type"]), "#95a5a6"),
            alpha=0.8,
        )

    ax.set_yticks(np.arange(len(labels)))
    ax.set_yticklabels(labels, fontsize=8)
    ax.invert_yaxis()
    ax.set_xlabel("Julian Date (TDB)")
    ax.set_title(title)

    from matplotlib.patches import Patch
    seen_types = sorted(segments_df["data_type"].unique())
    ax.legend(
        handles=[
            Patch(color=TYPE_COLORS.get(int(t), "#95a5a6"), label=f"Type {int(t)}")
            for t in seen_types
        ],
        loc="lower right",
        fontsize=8,
    )

    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig


def plot_state_history(
    states_df: pd.DataFrame,
    title: Optional[str] = None,
    save_path: Optional[str | Path] = None,
    figsize: tuple = (14, 8),
) -> plt.Figure:
    """Plot position and velocity components against epoch."""
    fig, axes = plt.subplots(2, 1, figsize=figsize, sharex=True)

    epochs = pd.to_datetime(states_df["epoch"])

    # Panel 1: Position
    ax = axes[0]
    for col, color in zip(("x", "y", "z"), AXIS_COLORS):
        ax.plot(epochs, states_df[col], linewidth=0.8, color=color, label=col)
    ax.set_ylabel("Position (km)")
    ax.set_title(title or "State History")
    ax.legend(loc="upper right", fontsize=8)

    # Panel 2: Velocity
    ax = axes[1]
    for col, color in zip(("vx", "vy", "vz"), AXIS_COLORS):
        ax.plot(epochs, states_df[col], linewidth=0.8, color=color, label=col)
    ax.set_ylabel("Velocity (km/s)")
    ax.set_xlabel("Epoch (TDB)")
    ax.legend(loc="upper right", fontsize=8)

    for ax in axes:
        ax.xaxis.set_major_formatter(mdates.DateFormatter("%Y-%m-%d"))
        ax.xaxis.set_major_locator(mdates.AutoDateLocator())
    fig.autofmt_xdate(rotation=30)

    plt.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")

    return fig
