"""疎線形代数ユーティリティ.

  - solve_linear(): pyamg / spsolve 適応選択の線形求解
  - apply_bc(): 拘束 DOF の行・列消去（ベクトル化）
  - TangentFactorization: 接線剛性の分解を保持し複数の右辺を解く
    （疎 LU または pyamg 前処理付き CG）
  - pivot_signature(): 対称 LDLᵀ ピボットの符号・最小値・負ピボット数
"""

from __future__ import annotations

import time
from typing import Any

import numpy as np
import pyamg
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from shellstab.config import LinearSolverType
from shellstab.core.results import DirichletResult, LinearSolveResult, PivotSignature
from shellstab.errors import ConvergenceError


def solve_linear(
    K: sp.spmatrix,
    f: np.ndarray,
    *,
    rtol: float = 1e-8,
    maxiter: int = 100000,
    size_threshold: int = 2000,
    show_progress: bool = False,
    use_pyamg: bool = True,
) -> LinearSolveResult:
    """pyamgを主体としたソルバ。小規模はspsolveにフォールバック。

    Args:
        K: 係数行列（pyamg 使用時は SPD 前提）
        f: 右辺ベクトル
        rtol: pyamgの収束tol
        maxiter: pyamg反復上限（V-cycle回数）
        size_threshold: これ未満の規模はspsolveで直接解く
        show_progress: セットアップ/ソルブ時間を表示
        use_pyamg: False なら規模によらず spsolve

    Returns:
        LinearSolveResult: (u, info) の NamedTuple
    """
    K = sp.csr_matrix(K)
    n = K.shape[0]
    info: dict[str, Any] = {
        "method": None,
        "nit": None,
        "success": True,
        "residual_norm": None,
        "setup_time": None,
        "solve_time": None,
    }

    if n < size_threshold or not use_pyamg:
        t0 = time.perf_counter()
        u = np.atleast_1d(spla.spsolve(K.tocsc(), f))
        elapsed = time.perf_counter() - t0
        info["method"] = "spsolve"
        info["nit"] = 1
        info["residual_norm"] = float(np.linalg.norm(K @ u - f))
        info["setup_time"] = 0.0
        info["solve_time"] = elapsed
        if show_progress:
            print(f"[spsolve] n={n}, nnz={K.nnz}, elapsed={elapsed:.3f} s")
        return LinearSolveResult(u=u, info=info)

    t0 = time.perf_counter()
    ml = pyamg.smoothed_aggregation_solver(
        K,
        symmetry="symmetric",
        presmoother=("gauss_seidel", {"sweep": "symmetric"}),
        postsmoother=("gauss_seidel", {"sweep": "symmetric"}),
    )
    setup_time = time.perf_counter() - t0

    residuals: list[float] = []
    t1 = time.perf_counter()
    u = ml.solve(b=f, tol=rtol, maxiter=maxiter, cycle="V", residuals=residuals)
    solve_time = time.perf_counter() - t1

    res_norm = float(residuals[-1]) if residuals else float(np.linalg.norm(K @ u - f))

    info["method"] = "pyamg-V"
    info["nit"] = len(residuals)
    info["success"] = res_norm <= rtol * max(float(np.linalg.norm(f)), 1.0)
    info["residual_norm"] = res_norm
    info["setup_time"] = setup_time
    info["solve_time"] = solve_time

    if show_progress:
        print(
            f"[pyamg-V] n={n}, nnz={K.nnz}, it={info['nit']}, "
            f"res={res_norm:.3e}, setup={setup_time:.3f}s, solve={solve_time:.3f}s"
        )

    return LinearSolveResult(u=u, info=info)


def apply_bc(
    K: sp.spmatrix,
    r: np.ndarray,
    fixed_dofs: np.ndarray,
) -> DirichletResult:
    """境界条件適用（ベクトル化行列消去法）.

    拘束 DOF の行・列をゼロにし対角を 1、右辺をゼロにする。
    """
    K_bc = sp.csr_matrix(K, dtype=float, copy=True)
    r_bc = np.asarray(r, dtype=float).copy()

    if len(fixed_dofs) == 0:
        return DirichletResult(K=K_bc, f=r_bc)

    # 対角マスクで行・列を一括消去: K_bc = D K D + (I - D)
    keep = np.ones(K_bc.shape[0], dtype=float)
    keep[fixed_dofs] = 0.0
    D = sp.diags(keep)
    K_bc = (D @ K_bc @ D + sp.diags(1.0 - keep)).tocsr()
    K_bc.eliminate_zeros()

    r_bc[fixed_dofs] = 0.0
    return DirichletResult(K=K_bc, f=r_bc)


class TangentFactorization:
    """接線剛性の分解を保持し、同じ行列で複数の右辺を解く.

    1 回の分解で予測子・修正子の 2 つの右辺（F と -R）を解くために使う。
    準 Newton では複数反復にわたって再利用される。

    Args:
        K: 係数行列（拘束適用済み）
        solver: LinearSolverType.DIRECT（疎 LU）または CG_AMG
        rtol: CG の相対収束判定値
        maxiter: CG の最大反復回数
    """

    def __init__(
        self,
        K: sp.spmatrix,
        solver: LinearSolverType = LinearSolverType.DIRECT,
        *,
        rtol: float = 1e-10,
        maxiter: int | None = None,
    ) -> None:
        self.K = sp.csr_matrix(K, dtype=float)
        self.solver = LinearSolverType(solver)
        self.rtol = rtol
        self.maxiter = maxiter
        if self.solver == LinearSolverType.DIRECT:
            self._lu = spla.splu(self.K.tocsc())
            self._precond = None
        else:
            self._lu = None
            ml = pyamg.smoothed_aggregation_solver(self.K, symmetry="symmetric")
            self._precond = ml.aspreconditioner(cycle="V")

    @property
    def shape(self) -> tuple[int, int]:
        return self.K.shape

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        """K x = rhs を解く."""
        rhs = np.asarray(rhs, dtype=float)
        if self._lu is not None:
            return np.atleast_1d(self._lu.solve(rhs))
        x, info = spla.cg(self.K, rhs, rtol=self.rtol, maxiter=self.maxiter, M=self._precond)
        if info != 0:
            raise ConvergenceError(
                f"CG が収束しませんでした (info={info})",
                iterations=max(info, 0),
                residual=float(np.linalg.norm(self.K @ x - rhs)),
                reason="linear_solver",
            )
        return x


def _permutation_parity(perm: np.ndarray) -> int:
    """置換の符号 (+1 / -1) を巡回分解から求める."""
    perm = np.asarray(perm, dtype=int)
    n = perm.shape[0]
    visited = np.zeros(n, dtype=bool)
    n_cycles = 0
    for i in range(n):
        if visited[i]:
            continue
        n_cycles += 1
        j = i
        while not visited[j]:
            visited[j] = True
            j = perm[j]
    return 1 if (n - n_cycles) % 2 == 0 else -1


def pivot_signature(K: sp.spmatrix) -> PivotSignature:
    """対称行列 K の LDLᵀ ピボット情報を返す.

    SuperLU を対称モード（対角ピボット閾値 0）で使い、U の対角を D として扱う。
    対称な並べ替えのみのとき負のピボット数は負の固有値数に等しい。
    厳密に特異な場合は sign=0 を返す。
    """
    K_csc = sp.csc_matrix(K, dtype=float)
    try:
        lu = spla.splu(
            K_csc,
            permc_spec="MMD_AT_PLUS_A",
            diag_pivot_thresh=0.0,
            options={"SymmetricMode": True},
        )
    except RuntimeError:
        # SuperLU: "Factor is exactly singular"
        return PivotSignature(sign=0.0, min_abs_pivot=0.0, n_negative=0)

    pivots = lu.U.diagonal()
    sign = float(np.prod(np.sign(pivots)))
    sign *= _permutation_parity(lu.perm_r) * _permutation_parity(lu.perm_c)
    return PivotSignature(
        sign=sign,
        min_abs_pivot=float(np.min(np.abs(pivots))),
        n_negative=int(np.count_nonzero(pivots < 0.0)),
    )


__all__ = [
    "solve_linear",
    "apply_bc",
    "TangentFactorization",
    "pivot_signature",
]
