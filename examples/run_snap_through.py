#!/usr/bin/env python3
"""浅い2部材トラス（von Mises トラス）のスナップスルー解析.

頂点に鉛直下向き荷重 P = λ·F を受ける対称2部材トラスを弧長法で追跡し、
リミットポイントを二分法で特定してから飛び移り後の経路まで追う。

  部材長 L(w) = sqrt(a² + (h - w)²),  ひずみ ε = L/L0 - 1
  内力 f_int(w) = -2·EA·ε·(h - w)/L

Usage:
    python examples/run_snap_through.py
    python examples/run_snap_through.py --plot   # 荷重-変位曲線を PNG 出力
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import scipy.sparse as sp

from shellstab.config import ArcLengthConfig, ArcLengthMethod
from shellstab.continuation import trace_path
from shellstab.core.state import SolutionState
from shellstab.output import export_path_csv, plot_load_path, save_checkpoint
from shellstab.timing import AssemblyTimer

OUTPUT_DIR = Path(__file__).resolve().parent / "output"

EA = 1.0e4
A_HALF = 10.0  # 半スパン
H = 1.0  # 頂点高さ
L0 = np.hypot(A_HALF, H)


def internal_force(u: np.ndarray) -> np.ndarray:
    s = H - u[0]
    L = np.hypot(A_HALF, s)
    eps = L / L0 - 1.0
    return np.array([-2.0 * EA * eps * s / L])


def jacobian(u: np.ndarray) -> sp.csr_matrix:
    s = H - u[0]
    L = np.hypot(A_HALF, s)
    eps = L / L0 - 1.0
    k = 2.0 * EA * (s**2 / (L**2 * L0) + eps * A_HALF**2 / L**3)
    return sp.csr_matrix([[k]])


def residual(u: np.ndarray, lam: float, force: np.ndarray) -> np.ndarray:
    return internal_force(u) - lam * force


def limit_load() -> float:
    """浅いトラス近似のリミット荷重 P_max = 2·EA·h³/(√27·a³)."""
    return 2.0 * EA * H**3 / (np.sqrt(27.0) * A_HALF**3)


def main():
    make_plot = "--plot" in sys.argv[1:]

    print("=" * 60)
    print("von Mises トラスのスナップスルー（Crisfield 円筒弧長法）")
    print("=" * 60)

    cfg = ArcLengthConfig(method=ArcLengthMethod.CRISFIELD, length=0.05, tol=1e-8)
    timer = AssemblyTimer()
    result = trace_path(
        jacobian,
        residual,
        np.array([1.0]),
        cfg,
        n_steps=60,
        detect_stability=True,
        locate_singular=True,
        show_progress=False,
        timer=timer,
    )

    print(f"  収束: {result.converged}, ステップ数: {result.n_steps}")
    print(f"  合計反復回数: {result.total_iterations}")
    print(f"  最終: w = {result.u[0]:.6f}, λ = {result.lam:.6f}")
    for point in result.singular_points:
        print(f"  {point.point_type} point: w = {point.u[0]:.6f}, λ = {point.lam:.6f}")
    print(f"  リミット荷重（浅いトラス近似）: {limit_load():.6f}")
    print()
    print(timer.summary())

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    csv_path = export_path_csv(result, OUTPUT_DIR / "snap_through.csv", dofs=[0])
    print(f"\n  CSV: {csv_path}")
    state = SolutionState(u=result.u, lam=result.lam, step_index=result.n_steps)
    print(f"  checkpoint: {save_checkpoint(OUTPUT_DIR / 'snap_through.json', state)}")
    if make_plot:
        png = plot_load_path(result, OUTPUT_DIR / "snap_through.png", dof=0, title="von Mises truss")
        print(f"  図: {png}")


if __name__ == "__main__":
    main()
