"""
Visualization of heap diff results.

Provides:
- Memory growth bar chart per constructor
"""

import sys
from typing import Union

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

from heap_diff import HeapDiff  # noqa: E402


def memory_growth_chart(
    growth: Union[HeapDiff, pd.DataFrame],
    output_path: str,
    top_n: int = 15,
    title: str = "Memory Growth by Constructor",
) -> str:
    """
    Create a bar chart showing memory growth.

    Args:
        growth: HeapDiff, or DataFrame from HeapDiff.growth_dataframe()
        output_path: Where to save the image
        top_n: Number of top growing constructors to show
        title: Title for the chart

    Returns:
        Path to saved image
    """
    if isinstance(growth, HeapDiff):
        growth = growth.growth_dataframe()

    if growth.empty:
        print("No data to visualize", file=sys.stderr)
        return output_path

    # Get top growing constructors, largest at the top of the chart
    df = growth.nlargest(top_n, "size_delta").iloc[::-1].copy()
    df["size_delta_mb"] = df["size_delta"] / (1024 * 1024)
    df["label"] = (
        df["constructor"].astype(str).str[:30]
        + " ("
        + df["count_delta"].map(lambda delta: f"{delta:+d}")
        + ")"
    )

    fig, ax = plt.subplots(figsize=(12, 8))

    bars = ax.barh(df["label"], df["size_delta_mb"])

    # Color bars by growth amount
    colors = plt.cm.RdYlGn_r(np.linspace(0.2, 0.8, len(bars)))
    for bar, color in zip(bars, colors):
        bar.set_color(color)

    ax.set_xlabel("Memory Growth (MB)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.grid(axis="x", alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    print(f"Memory growth chart saved to {output_path}", file=sys.stderr)
    return output_path
