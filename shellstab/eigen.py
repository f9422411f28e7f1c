"""一般化固有値ソルバー（線形座屈・モード解析・安定判定）.

一般化固有値問題 A·v = μ·B·v を解く。

  線形座屈（BucklingSolver）:
      A = K_L, B = K_NL - K_L
      K_L·v = μ·(K_NL - K_L)·v   （μ: 座屈荷重係数）
  モード解析（ModalSolver）:
      A = K, B = M
      K·v = ω²·M·v

解法:
  - compute(shift):           密行列の一般化対称固有値分解（O(n³), 検証・小規模用）
  - compute_sparse(shift, k): ARPACK (scipy eigsh) による k 個の固有対。
                              スペクトル変換は設定 solver で選ぶ:
        0: Cholesky        B = C·Cᵀ として C⁻¹·A·C⁻ᵀ の標準問題
        1: RegularInverse  B⁻¹·A（B は正定値）
        2: ShiftInvert     (A - σB)⁻¹·B
        3: Buckling        (A - σB)⁻¹·A（A は半正定値, σ ≠ 0）
        4: Cayley          (A - σB)⁻¹·(A + σB)（σ ≠ 0）
  - compute_power():          D = K_L⁻¹·(K_NL - K_L) のべき乗法（支配固有対のみ）

シフト付き解法では (A - shift·B, B) を解き、固有値に +shift して報告する。
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import numpy as np
import scipy.linalg
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from scipy.sparse.linalg import ArpackNoConvergence

from shellstab.config import EigenConfig, SelectionRule, SpectraMode
from shellstab.core.callbacks import NonlinearOperator
from shellstab.core.results import EigenMode
from shellstab.errors import ConfigError, ConvergenceError
from shellstab.linalg import solve_linear

# SelectionRule → eigsh の which（実対称問題なので Real = Alge）
_WHICH: dict[SelectionRule, str] = {
    SelectionRule.LARGEST_MAGN: "LM",
    SelectionRule.LARGEST_REAL: "LA",
    SelectionRule.LARGEST_ALGE: "LA",
    SelectionRule.SMALLEST_MAGN: "SM",
    SelectionRule.SMALLEST_REAL: "SA",
    SelectionRule.SMALLEST_ALGE: "SA",
    SelectionRule.BOTH_ENDS: "BE",
}


def _to_dense(M: np.ndarray | sp.spmatrix) -> np.ndarray:
    if sp.issparse(M):
        return M.toarray()
    return np.asarray(M, dtype=float)


def _sort_order(values: np.ndarray, rule: SelectionRule) -> np.ndarray:
    """並べ替え規則に従うインデックス配列を返す."""
    if rule == SelectionRule.LARGEST_MAGN:
        return np.argsort(-np.abs(values), kind="stable")
    if rule in (SelectionRule.LARGEST_REAL, SelectionRule.LARGEST_ALGE):
        return np.argsort(-values, kind="stable")
    if rule == SelectionRule.SMALLEST_MAGN:
        return np.argsort(np.abs(values), kind="stable")
    return np.argsort(values, kind="stable")


class EigenProblemBase:
    """一般化固有値問題 A·v = μ·B·v の共通基底クラス.

    固有対は compute* を呼ぶたびに全体を再計算する（増分更新なし）。

    Args:
        A: (n, n) 左辺行列（対称）
        B: (n, n) 右辺行列（対称）
        config: 固有値ソルバーの設定
    """

    def __init__(
        self,
        A: np.ndarray | sp.spmatrix | None,
        B: np.ndarray | sp.spmatrix | None,
        config: EigenConfig | None = None,
    ) -> None:
        self._A = None if A is None else sp.csr_matrix(A, dtype=float)
        self._B = None if B is None else sp.csr_matrix(B, dtype=float)
        self.config = config if config is not None else EigenConfig()
        self._values = np.zeros(0)
        self._vectors = np.zeros((0, 0))
        self.power_converged: bool | None = None
        self.power_iterations = 0

    # ----------------------------------------------------------------
    # 設定
    # ----------------------------------------------------------------

    def options(self) -> dict[str, Any]:
        """現在の設定をオプション名の辞書で返す."""
        return self.config.to_options()

    def apply_options(self, options: Mapping[str, Any]) -> None:
        """オプションを適用する（検証は即時）."""
        self.config = self.config.with_options(options)

    def _matrices(self) -> tuple[sp.csr_matrix, sp.csr_matrix]:
        if self._A is None or self._B is None:
            raise ConfigError("固有値問題の行列が未設定です。")
        return self._A, self._B

    # ----------------------------------------------------------------
    # 密行列解法
    # ----------------------------------------------------------------

    def compute(self, shift: float = 0.0) -> None:
        """密行列の一般化固有値分解で全固有対を求める.

        (A - shift·B)·v = μ'·B·v を解き、μ = μ' + shift を昇順で保持する。
        B が正定値でない場合は非対称一般化固有値解法で有限の実固有値のみ残す。
        """
        A, B = self._matrices()
        verbose = self.config.verbose
        if verbose:
            print("Solving eigenvalue problem (dense)", end="")
        A_d = _to_dense(A) - shift * _to_dense(B)
        B_d = _to_dense(B)
        try:
            values, vectors = scipy.linalg.eigh(A_d, B_d)
        except np.linalg.LinAlgError:
            # B が正定値でない: QZ 法で解いて実部を採る
            w, V = scipy.linalg.eig(A_d, B_d)
            finite = np.isfinite(w)
            w, V = w[finite].real, V[:, finite].real
            order = np.argsort(w, kind="stable")
            values = w[order]
            vectors = V[:, order] / np.linalg.norm(V[:, order], axis=0)
        if verbose:
            print(" ... Finished")
        self._values = np.asarray(values, dtype=float) + shift
        self._vectors = np.asarray(vectors, dtype=float)

    # ----------------------------------------------------------------
    # 疎行列解法（ARPACK）
    # ----------------------------------------------------------------

    def compute_sparse(self, shift: float = 0.0, number: int = 10) -> None:
        """ARPACK で number 個の固有対を求める.

        スペクトル変換は config.solver で選び、呼び出しごとに1回だけ解決する。

        Args:
            shift: シフト σ
            number: 求める固有値の数（1 ≤ number < n）

        Raises:
            ConvergenceError: 反復上限内に収束しない場合（"solver did not converge"）
        """
        A, B = self._matrices()
        n = A.shape[0]
        if not (1 <= number < n):
            raise ConfigError(f"number は 1 以上 n={n} 未満: {number}")
        cfg = self.config
        ncv = min(n, max(2 * number, cfg.ncv_fac * number))
        strategy = self._SPARSE_STRATEGIES[cfg.solver]

        if cfg.verbose:
            print(f"Solving eigenvalue problem (sparse, {cfg.solver.name}, ncv={ncv})", end="")
        try:
            values, vectors = strategy(self, A, B, shift, number, ncv)
        except ArpackNoConvergence as exc:
            raise ConvergenceError(
                "solver did not converge",
                iterations=cfg.max_iter,
                reason="arpack",
            ) from exc
        if cfg.verbose:
            print(" ... Finished")

        order = _sort_order(values, cfg.sort_rule)
        self._values = np.asarray(values, dtype=float)[order]
        self._vectors = np.asarray(vectors, dtype=float)[:, order]

    def _eigsh_kwargs(self, ncv: int) -> dict[str, Any]:
        return {"ncv": ncv, "tol": self.config.tol, "maxiter": self.config.max_iter}

    def _sparse_cholesky(self, A, B, shift, number, ncv):
        # B = L·D·Lᵀ（ピボットなし）から C = L·√D を作り、C⁻¹(A - σB)C⁻ᵀ を解く
        n = A.shape[0]
        lu = spla.splu(
            B.tocsc(),
            permc_spec="NATURAL",
            diag_pivot_thresh=0.0,
            options={"SymmetricMode": True},
        )
        identity = np.arange(n)
        d = lu.U.diagonal()
        if (
            not np.array_equal(lu.perm_r, identity)
            or not np.array_equal(lu.perm_c, identity)
            or np.any(d <= 0.0)
        ):
            raise ConfigError("Cholesky モードには正定値な B が必要です。")
        sqrt_d = np.sqrt(d)
        L = lu.L.tocsr()
        Lt = lu.L.T.tocsr()
        A_s = (A - shift * B).tocsr()

        def c_inv(x: np.ndarray) -> np.ndarray:
            return spla.spsolve_triangular(L, x, lower=True, unit_diagonal=True) / sqrt_d

        def ct_inv(x: np.ndarray) -> np.ndarray:
            return spla.spsolve_triangular(Lt, x / sqrt_d, lower=False, unit_diagonal=True)

        op = spla.LinearOperator(
            (n, n),
            matvec=lambda x: c_inv(A_s @ ct_inv(np.ravel(x))),
            dtype=float,
        )
        values, Y = spla.eigsh(
            op, k=number, which=_WHICH[self.config.selection_rule], **self._eigsh_kwargs(ncv)
        )
        vectors = np.column_stack([ct_inv(Y[:, j]) for j in range(Y.shape[1])])
        return values + shift, vectors

    def _sparse_regular_inverse(self, A, B, shift, number, ncv):
        n = A.shape[0]
        B_lu = spla.splu(B.tocsc())
        Minv = spla.LinearOperator((n, n), matvec=lambda x: B_lu.solve(np.ravel(x)), dtype=float)
        values, vectors = spla.eigsh(
            (A - shift * B).tocsr(),
            k=number,
            M=B,
            Minv=Minv,
            which=_WHICH[self.config.selection_rule],
            **self._eigsh_kwargs(ncv),
        )
        return values + shift, vectors

    def _sparse_shift_invert(self, A, B, shift, number, ncv):
        # 変換後固有値の絶対値最大 = σ に最も近い固有値
        return spla.eigsh(
            A.tocsc(),
            k=number,
            M=B.tocsc(),
            sigma=shift,
            which="LM",
            mode="normal",
            **self._eigsh_kwargs(ncv),
        )

    def _sparse_buckling(self, A, B, shift, number, ncv):
        if shift == 0.0:
            raise ConfigError("Buckling モードには非ゼロのシフトが必要です。")
        return spla.eigsh(
            A.tocsc(),
            k=number,
            M=B.tocsc(),
            sigma=shift,
            which="LM",
            mode="buckling",
            **self._eigsh_kwargs(ncv),
        )

    def _sparse_cayley(self, A, B, shift, number, ncv):
        if shift == 0.0:
            raise ConfigError("Cayley モードには非ゼロのシフトが必要です。")
        return spla.eigsh(
            A.tocsc(),
            k=number,
            M=B.tocsc(),
            sigma=shift,
            which="LM",
            mode="cayley",
            **self._eigsh_kwargs(ncv),
        )

    _SPARSE_STRATEGIES: dict[SpectraMode, Callable[..., tuple[np.ndarray, np.ndarray]]] = {
        SpectraMode.CHOLESKY: _sparse_cholesky,
        SpectraMode.REGULAR_INVERSE: _sparse_regular_inverse,
        SpectraMode.SHIFT_INVERT: _sparse_shift_invert,
        SpectraMode.BUCKLING: _sparse_buckling,
        SpectraMode.CAYLEY: _sparse_cayley,
    }

    # ----------------------------------------------------------------
    # べき乗法
    # ----------------------------------------------------------------

    def _power_operator(self) -> np.ndarray:
        A, B = self._matrices()
        # 近特異な A は検出しない（結果が無意味になる）
        return np.linalg.solve(_to_dense(A), _to_dense(B))

    def compute_power(self) -> None:
        """べき乗法で D = A⁻¹·B の支配固有対を求める.

        v ← D·v / ||D·v|| を ||v - v_old|| < power_tol まで反復し、
        固有値を μ = (v·v) / (v·D·v)（D の支配固有値の逆数）として保持する。

        反復上限に達した場合は最後の反復値を保持し power_converged = False とする
        （power_strict=True なら ConvergenceError）。
        支配固有値が負のときは符号が反転し続けるため収束判定を満たさない。
        """
        cfg = self.config
        if cfg.verbose:
            print("Solving eigenvalue problem (power iteration)", end="")
        D = self._power_operator()

        v = np.ones(D.shape[1])
        v_old = np.zeros(D.shape[1])
        error = np.inf
        converged = False
        k = 0
        for k in range(1, cfg.power_max_iter + 1):
            v = D @ v
            v /= np.linalg.norm(v)
            error = float(np.linalg.norm(v - v_old))
            if error < cfg.power_tol:
                converged = True
                break
            v_old = v

        self.power_converged = converged
        self.power_iterations = k
        self._vectors = v.reshape(-1, 1)
        self._values = np.array([float(v @ v) / float(v @ (D @ v))])

        if cfg.verbose:
            print(" ... Finished" if converged else f" ... not converged (error={error:.3e})")
        if not converged and cfg.power_strict:
            raise ConvergenceError(
                "power iteration did not converge",
                iterations=k,
                residual=error,
                reason="power",
            )

    # ----------------------------------------------------------------
    # 結果アクセサ
    # ----------------------------------------------------------------

    @property
    def values(self) -> np.ndarray:
        """(k,) 固有値."""
        return self._values

    @property
    def vectors(self) -> np.ndarray:
        """(n, k) 固有ベクトル（列が各固有値に対応）."""
        return self._vectors

    def value(self, k: int) -> float:
        return float(self._values[k])

    def vector(self, k: int) -> np.ndarray:
        return self._vectors[:, k]

    def mode(self, k: int) -> EigenMode:
        """k 番目の固有対を1つの単位として返す."""
        return EigenMode(value=self.value(k), vector=self.vector(k).copy())


class BucklingSolver(EigenProblemBase):
    """線形座屈解析: K_L·v = μ·(K_NL - K_L)·v.

    K_NL は直接与えるか、initialize_matrix() で参照線形解から作る:
        K_L·u_ref = scaling·rhs,  K_NL = nonlinear_fun(u_ref)

    Args:
        linear: (n, n) 線形剛性 K_L
        nonlinear: (n, n) 非線形剛性 K_NL（None なら initialize_matrix() で生成）
        rhs: 参照荷重ベクトル（initialize_matrix 用）
        nonlinear_fun: u → K_NL(u)（initialize_matrix 用）
        scaling: 参照荷重の倍率
        config: 固有値ソルバーの設定
    """

    def __init__(
        self,
        linear: np.ndarray | sp.spmatrix,
        nonlinear: np.ndarray | sp.spmatrix | None = None,
        *,
        rhs: np.ndarray | None = None,
        nonlinear_fun: NonlinearOperator | None = None,
        scaling: float = 1.0,
        config: EigenConfig | None = None,
    ) -> None:
        super().__init__(linear, None, config)
        self._nonlinear = None if nonlinear is None else sp.csr_matrix(nonlinear, dtype=float)
        self._rhs = None if rhs is None else np.asarray(rhs, dtype=float)
        self._nonlinear_fun = nonlinear_fun
        self.scaling = scaling
        self.reference_solution: np.ndarray | None = None

    @property
    def linear(self) -> sp.csr_matrix:
        return self._A

    @property
    def nonlinear(self) -> sp.csr_matrix | None:
        return self._nonlinear

    def initialize_matrix(self) -> None:
        """参照線形解を求めて K_NL を構築する."""
        if self._rhs is None or self._nonlinear_fun is None:
            raise ConfigError("initialize_matrix() には rhs と nonlinear_fun が必要です。")
        if self.config.verbose:
            print("Computing matrices", end="")
        result = solve_linear(self._A, self.scaling * self._rhs, show_progress=False)
        self.reference_solution = result.u
        self._nonlinear = sp.csr_matrix(self._nonlinear_fun(result.u), dtype=float)
        if self.config.verbose:
            print(" ... Finished")

    def _matrices(self) -> tuple[sp.csr_matrix, sp.csr_matrix]:
        if self._nonlinear is None:
            raise ConfigError("K_NL が未設定です。initialize_matrix() を先に呼んでください。")
        return self._A, (self._nonlinear - self._A).tocsr()

    def compute_sparse_descending(self, number: int = 10) -> None:
        """代数的に小さい順の number 個を求め、降順に反転して保持する.

        ARPACK は代数的最小側を昇順で返すが、呼び出し側は大きい順を期待する。
        values と vectors の列は同じ順序で反転する。
        """
        A, B = self._matrices()
        n = A.shape[0]
        if not (1 <= number < n):
            raise ConfigError(f"number は 1 以上 n={n} 未満: {number}")
        B_lu = spla.splu(B.tocsc())
        Minv = spla.LinearOperator((n, n), matvec=lambda x: B_lu.solve(np.ravel(x)), dtype=float)
        try:
            values, vectors = spla.eigsh(
                A,
                k=number,
                M=B,
                Minv=Minv,
                which="SA",
                ncv=min(n, 2 * number),
                tol=self.config.tol,
                maxiter=self.config.max_iter,
            )
        except ArpackNoConvergence as exc:
            raise ConvergenceError(
                "solver did not converge", iterations=self.config.max_iter, reason="arpack"
            ) from exc

        ascending = np.argsort(values, kind="stable")
        self._values = values[ascending][::-1]
        self._vectors = vectors[:, ascending][:, ::-1]


class ModalSolver(EigenProblemBase):
    """モード解析: K·v = ω²·M·v.

    M に単位行列を与えると K の標準固有値問題になり、接線剛性の安定判定に使える。

    Args:
        stiffness: (n, n) 剛性行列 K
        mass: (n, n) 質量行列 M（None なら単位行列）
        config: 固有値ソルバーの設定
    """

    def __init__(
        self,
        stiffness: np.ndarray | sp.spmatrix,
        mass: np.ndarray | sp.spmatrix | None = None,
        config: EigenConfig | None = None,
    ) -> None:
        if mass is None:
            mass = sp.identity(stiffness.shape[0], format="csr")
        super().__init__(stiffness, mass, config)

    def frequencies(self) -> np.ndarray:
        """固有角振動数 ω = √μ（負の固有値は 0 として扱う）."""
        return np.sqrt(np.clip(self._values, 0.0, None))


def smallest_eigenpair(
    K: np.ndarray | sp.spmatrix,
    *,
    dense_threshold: int = 200,
) -> EigenMode:
    """K の絶対値最小の固有値と固有ベクトルを返す.

    小規模（n < dense_threshold）は密行列で全固有値を求め、
    大規模は σ=0 のシフト逆反復（ARPACK）で1個だけ求める。
    """
    n = K.shape[0]
    if n < max(dense_threshold, 2):
        solver = ModalSolver(K)
        solver.compute()
        k = int(np.argmin(np.abs(solver.values)))
        return solver.mode(k)
    solver = ModalSolver(
        K, config=EigenConfig(solver=SpectraMode.SHIFT_INVERT, sort_rule=SelectionRule.SMALLEST_MAGN)
    )
    solver.compute_sparse(shift=0.0, number=1)
    return solver.mode(0)


__all__ = [
    "EigenProblemBase",
    "BucklingSolver",
    "ModalSolver",
    "smallest_eigenpair",
]
