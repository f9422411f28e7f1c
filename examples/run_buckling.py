#!/usr/bin/env python3
"""単純支持柱の線形座屈解析と固有振動解析.

差分近似 A2 = tridiag(-1, 2, -1)/h² を用いて
  K_L = EI·A2²（曲げ剛性）,  G = A2（単位圧縮荷重の幾何剛性の大きさ）
とし、参照荷重 P_ref に対して K_NL - K_L = P_ref·G を与える。
座屈荷重は P_cr = μ·P_ref（Euler 解 π²EI/L²）。

Usage:
    python examples/run_buckling.py
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from shellstab.config import EigenConfig, SpectraMode
from shellstab.eigen import BucklingSolver, ModalSolver

EI = 2.0e3
LENGTH = 1.0
RHO_A = 7.85
N_INTERIOR = 99
P_REF = 100.0


def _second_difference(n: int, h: float) -> sp.csr_matrix:
    return sp.diags([-1.0, 2.0, -1.0], [-1, 0, 1], shape=(n, n), format="csr") / h**2


def run_buckling():
    print("=" * 60)
    print("単純支持柱の線形座屈")
    print("=" * 60)

    h = LENGTH / (N_INTERIOR + 1)
    A2 = _second_difference(N_INTERIOR, h)
    K_L = (EI * (A2 @ A2)).tocsr()
    K_NL = (K_L + P_REF * A2).tocsr()

    p_euler = np.pi**2 * EI / LENGTH**2

    dense = BucklingSolver(K_L, K_NL)
    dense.compute()
    print(f"  密ソルバー:   P_cr = {dense.value(0) * P_REF:.4f}")

    sparse = BucklingSolver(K_L, K_NL, config=EigenConfig(solver=SpectraMode.SHIFT_INVERT))
    sparse.compute_sparse(shift=0.0, number=3)
    for k in range(3):
        print(f"  疎ソルバー モード {k + 1}: P_cr = {sparse.value(k) * P_REF:.4f}")

    power = BucklingSolver(K_L, K_NL)
    power.compute_power()
    print(f"  べき乗法:     P_cr = {power.value(0) * P_REF:.4f} (収束: {power.power_converged})")
    print(f"  Euler 解:     P_cr = {p_euler:.4f}")
    print()


def run_modal():
    print("=" * 60)
    print("単純支持柱の固有振動")
    print("=" * 60)

    h = LENGTH / (N_INTERIOR + 1)
    A2 = _second_difference(N_INTERIOR, h)
    K = (EI * (A2 @ A2)).tocsr()
    M = sp.identity(N_INTERIOR, format="csr") * RHO_A

    solver = ModalSolver(K, M, EigenConfig(solver=SpectraMode.SHIFT_INVERT))
    solver.compute_sparse(number=3)
    freqs = solver.frequencies() / (2.0 * np.pi)
    for k, f in enumerate(freqs, start=1):
        exact = (k * np.pi / LENGTH) ** 2 * np.sqrt(EI / RHO_A) / (2.0 * np.pi)
        print(f"  モード {k}: f = {f:.4f} Hz (解析解 {exact:.4f} Hz)")
    print()


def main():
    run_buckling()
    run_modal()


if __name__ == "__main__":
    main()
