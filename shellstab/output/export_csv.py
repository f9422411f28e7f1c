"""荷重-変位経路の CSV エクスポート."""

from __future__ import annotations

import csv
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from shellstab.continuation import ArcLengthResult


def export_path_csv(
    result: ArcLengthResult,
    filepath: str | Path,
    *,
    dofs: Sequence[int] | None = None,
) -> str:
    """経路追跡結果をステップごとに1行の CSV に書き出す.

    列: step, lambda, |u|, [indicator], u[dof]...

    Args:
        result: trace_path の結果
        filepath: 出力ファイルパス
        dofs: 個別に書き出す DOF 番号（None なら書き出さない）

    Returns:
        生成されたファイルパス
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    dofs = [] if dofs is None else [int(d) for d in dofs]
    has_indicator = len(result.indicator_history) == len(result.load_history) > 0

    header = ["step", "lambda", "u_norm"]
    if has_indicator:
        header.append("indicator")
    header.extend(f"u_{d}" for d in dofs)

    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        for i, (lam, u) in enumerate(
            zip(result.load_history, result.displacement_history, strict=True)
        ):
            row = [i + 1, f"{lam:.12e}", f"{float(np.linalg.norm(u)):.12e}"]
            if has_indicator:
                row.append(f"{result.indicator_history[i]:.12e}")
            row.extend(f"{u[d]:.12e}" for d in dofs)
            writer.writerow(row)

    return str(path)


__all__ = ["export_path_csv"]
