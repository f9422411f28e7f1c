"""荷重-変位経路の描画（matplotlib）."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from shellstab.continuation import ArcLengthResult


def plot_load_path(
    result: ArcLengthResult,
    filepath: str | Path,
    *,
    dof: int | None = None,
    title: str = "Load path",
    figsize: tuple[float, float] = (6.0, 4.5),
    dpi: int = 100,
) -> Path:
    """λ-変位曲線を PNG に出力する. 特異点は赤丸で示す.

    Args:
        result: trace_path の結果
        filepath: 出力ファイルパス
        dof: 横軸に取る DOF（None なら ||u||）
        title: 図のタイトル
        figsize: 図のサイズ
        dpi: 解像度
    """
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    def _abscissa(u: np.ndarray) -> float:
        return float(u[dof]) if dof is not None else float(np.linalg.norm(u))

    x = [_abscissa(u) for u in result.displacement_history]
    y = list(result.load_history)

    fig, ax = plt.subplots(1, 1, figsize=figsize, dpi=dpi)
    ax.plot(x, y, "o-", ms=3, lw=1.2, color="tab:blue", label="equilibrium path")
    for k, point in enumerate(result.singular_points):
        ax.plot(
            _abscissa(point.u),
            point.lam,
            "o",
            ms=7,
            mfc="none",
            color="tab:red",
            label=point.point_type if k == 0 else None,
        )
    ax.set_xlabel(f"u[{dof}]" if dof is not None else "||u||")
    ax.set_ylabel("λ")
    ax.set_title(title)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best")

    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, bbox_inches="tight")
    plt.close(fig)
    return path


__all__ = ["plot_load_path"]
