"""Table rendering utilities."""
from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd
from rich.console import Console
from rich.table import Table

from hsreg.experiments.compare import ComparisonResult


def to_latex_table(rows: Iterable[Iterable[str]], columns: int = 1) -> str:
    """Render rows into a simple LaTeX tabular environment."""
    lines = ["\\begin{tabular}{" + "l" * max(1, columns) + "}"]
    for row in rows:
        lines.append(" & ".join(row) + " \\\\")
    lines.append("\\end{tabular}")
    return "\n".join(lines)


def frame_to_latex(frame: pd.DataFrame, digits: int = 2) -> str:
    header = [frame.index.name or ""] + [str(c) for c in frame.columns]
    body = [
        [str(idx)] + [f"{v:.{digits}f}" if isinstance(v, float) else str(v) for v in row]
        for idx, row in zip(frame.index, frame.itertuples(index=False))
    ]
    return to_latex_table([header, *body], columns=len(header))


def frame_to_rich(frame: pd.DataFrame, title: Optional[str] = None, digits: int = 2) -> Table:
    table = Table(title=title)
    table.add_column(frame.index.name or "", style="bold")
    for col in frame.columns:
        table.add_column(str(col), justify="right")
    for idx, row in zip(frame.index, frame.itertuples(index=False)):
        cells = [f"{v:.{digits}f}" if isinstance(v, float) else str(v) for v in row]
        table.add_row(str(idx), *cells)
    return table


def comparison_frame(result: ComparisonResult) -> pd.DataFrame:
    frame = pd.DataFrame(result.to_records()).set_index("model")
    return frame


def print_comparison(result: ComparisonResult, console: Optional[Console] = None) -> None:
    """Print the ranked comparison table."""
    console = console or Console()
    console.print(frame_to_rich(comparison_frame(result), title=f"Model comparison ({result.criterion.upper()})"))


def print_summary(summary: pd.DataFrame, title: str, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(frame_to_rich(summary, title=title))
