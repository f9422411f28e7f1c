"""弧長法による平衡経路追跡エンジン.

荷重係数 λ を未知数に加え、弧長拘束式のもとで予測子・修正子（Newton）反復を行い、
リミットポイント（スナップスルー）や分岐点を越えて平衡経路を追跡する。

残差と接線:
    R(u, λ) = f_int(u) - λ·F,    K = ∂f_int/∂u

修正子（各反復）:
    [ K   -F ] [δu]   [-R]
    [ g_u g_λ] [δλ] = [-g]

    δu = δū + δλ·δu_t,   δū = K⁻¹(-R),  δu_t = K⁻¹F

拘束式（Method）:
    0: 荷重制御         δλ = 0
    1: Riks             予測子に直交する平面上で修正
    2: Crisfield        ||Δu||² + ψ²Δλ²(F·F) = Δl²（ψ=0 で円筒弧長法）の2次方程式
    3: consistent Crisfield  上式を線形化した1次式
    4: 拡大系反復       上記線形化拘束を縁付き行列として一括で解く

安定判定は接線剛性の LDLᵀ ピボット（行列式法）または絶対値最小の固有値で行い、
符号変化を検出したら二分法で特異点を求め、零空間ベクトル方向に分岐を切り替える。

エンジンは失敗したステップを再試行しない。弧長の縮小などは呼び出し側が行う
（shellstab.continuation.trace_path 参照）。
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from shellstab.config import (
    AngleMethod,
    ArcLengthConfig,
    ArcLengthMethod,
    BifurcationMethod,
    PredictorType,
)
from shellstab.core.callbacks import JacobianCallback, ResidualCallback
from shellstab.core.results import SingularPoint, StepInfo
from shellstab.core.state import SolutionState
from shellstab.eigen import smallest_eigenpair
from shellstab.errors import ConfigError, ConvergenceError, NonConvergenceError
from shellstab.linalg import TangentFactorization, apply_bc, pivot_signature


class IteratorState(Enum):
    """弧長法エンジンの状態."""

    INITIALIZED = "initialized"
    STEPPING = "stepping"
    STABLE = "stable"
    UNSTABLE = "unstable"
    LOCATING_SINGULAR_POINT = "locating_singular_point"
    BRANCH_SWITCHED = "branch_switched"
    NON_CONVERGED = "non_converged"


class ArcLengthIterator:
    """弧長法の予測子・修正子反復と安定判定・分岐切替.

    Args:
        jacobian: u → K(u) を返すコールバック（疎行列）
        residual: (u, λ, F) → f_int(u) - λ·F を返すコールバック
        force: (ndof,) 参照荷重ベクトル F
        config: エンジン設定（None なら既定値）
        fixed_dofs: 拘束 DOF（行・列消去で扱う）

    使用例::

        it = ArcLengthIterator(jac, res, F, ArcLengthConfig(length=0.1))
        it.initialize()
        for _ in range(20):
            it.step()
            it.compute_stability(it.solution_u)
            if it.stability_change():
                it.compute_singular_point(1e-4, 20, u_old, lam_old, 1e-10)
                it.switch_branch()
    """

    def __init__(
        self,
        jacobian: JacobianCallback | None,
        residual: ResidualCallback | None,
        force: np.ndarray | None,
        config: ArcLengthConfig | None = None,
        *,
        fixed_dofs: np.ndarray | None = None,
    ) -> None:
        self._jacobian = jacobian
        self._residual = residual
        self._force_raw = force
        self.config = config if config is not None else ArcLengthConfig()
        self._fixed = np.asarray(fixed_dofs if fixed_dofs is not None else [], dtype=int)

        self._initialized = False
        self._state = IteratorState.INITIALIZED
        self._force = np.zeros(0)
        self._u = np.zeros(0)
        self._lam = 0.0
        self._du = np.zeros(0)
        self._dlam = 0.0
        self._length = self.config.length
        self._converged = False
        self._iterations = 0
        self._step_index = 0
        self._last_info: StepInfo | None = None
        self._last_tangent: sp.csr_matrix | None = None
        self._indicator: float | None = None
        self._indicator_prev: float | None = None
        self._phi: np.ndarray | None = None
        self._singular_point: SingularPoint | None = None
        self._force_secant = False

    # ----------------------------------------------------------------
    # 設定・初期化
    # ----------------------------------------------------------------

    def options(self) -> dict[str, Any]:
        """現在の設定をオプション名の辞書で返す."""
        return self.config.to_options()

    def apply_options(self, options: Mapping[str, Any]) -> None:
        """オプションを適用する. 弧長は次の initialize() で反映される."""
        self.config = self.config.with_options(options)

    def initialize(self) -> None:
        """増分・状態をリセットし、コールバックと荷重ベクトルを検証する.

        Raises:
            ConfigError: コールバックまたは荷重ベクトルが欠けている・不正な場合
        """
        if not isinstance(self._jacobian, JacobianCallback):
            raise ConfigError("jacobian コールバックが設定されていません。")
        if not isinstance(self._residual, ResidualCallback):
            raise ConfigError("residual コールバックが設定されていません。")
        if self._force_raw is None:
            raise ConfigError("参照荷重ベクトル F が設定されていません。")
        force = np.asarray(self._force_raw, dtype=float).ravel().copy()
        if force.size == 0 or not np.all(np.isfinite(force)):
            raise ConfigError("参照荷重ベクトル F が空または非有限です。")
        force[self._fixed] = 0.0
        if float(np.linalg.norm(force)) < 1e-30:
            raise ConfigError("参照荷重ベクトルがゼロです。")

        ndof = force.shape[0]
        self._force = force
        self._u = np.zeros(ndof)
        self._lam = 0.0
        self._du = np.zeros(ndof)
        self._dlam = 0.0
        self._length = self.config.length
        self._converged = False
        self._iterations = 0
        self._step_index = 0
        self._last_info = None
        self._last_tangent = None
        self._indicator = None
        self._indicator_prev = None
        self._phi = None
        self._singular_point = None
        self._force_secant = False
        self._state = IteratorState.INITIALIZED
        self._initialized = True

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise ConfigError("initialize() を先に呼んでください。")

    # ----------------------------------------------------------------
    # 状態アクセサ
    # ----------------------------------------------------------------

    @property
    def converged(self) -> bool:
        """直前の step() が収束したか."""
        return self._converged

    @property
    def solution_u(self) -> np.ndarray:
        return self._u

    @property
    def solution_l(self) -> float:
        return self._lam

    @property
    def solution_du(self) -> np.ndarray:
        """直前ステップの変位増分 Δu."""
        return self._du

    @property
    def solution_dl(self) -> float:
        """直前ステップの荷重係数増分 Δλ."""
        return self._dlam

    @property
    def solution_v(self) -> np.ndarray | None:
        """特異点での零空間ベクトル φ（未計算なら None）."""
        return self._phi

    @property
    def indicator(self) -> float | None:
        return self._indicator

    @property
    def length(self) -> float:
        """次の step() で使う弧長."""
        return self._length

    @property
    def state(self) -> IteratorState:
        return self._state

    @property
    def iterations(self) -> int:
        """直前の step() の修正子反復回数."""
        return self._iterations

    @property
    def step_info(self) -> StepInfo | None:
        return self._last_info

    @property
    def singular_point(self) -> SingularPoint | None:
        return self._singular_point

    @property
    def force(self) -> np.ndarray:
        """拘束適用後の参照荷重ベクトル."""
        return self._force

    def solution_state(self) -> SolutionState:
        """現在の解を SolutionState として返す（チェックポイント用）."""
        return SolutionState(
            u=self._u.copy(),
            lam=self._lam,
            delta_u=self._du.copy(),
            delta_lam=self._dlam,
            step_index=self._step_index,
            length=self._length,
        )

    def restore(self, state: SolutionState) -> None:
        """チェックポイントの解状態から再開する.

        (u, λ), 増分 (Δu, Δλ), ステップ番号、弧長（None でなければ）を設定する。
        """
        self.set_solution(state.u, state.lam)
        self.set_solution_step(state.delta_u, state.delta_lam)
        self.set_step_index(state.step_index)
        if state.length is not None:
            self.set_length(state.length)

    def set_solution(self, u: np.ndarray, lam: float) -> None:
        """解 (u, λ) を設定する（再開・ステップ縮小用）."""
        self._check_initialized()
        u = np.asarray(u, dtype=float).ravel()
        if u.shape != self._force.shape:
            raise ConfigError(f"u のサイズが不正: {u.shape} != {self._force.shape}")
        self._u = u.copy()
        self._lam = float(lam)

    def set_solution_step(self, du: np.ndarray, dlam: float) -> None:
        """直前ステップの増分 (Δu, Δλ) を設定する（割線予測子の種）."""
        self._check_initialized()
        du = np.asarray(du, dtype=float).ravel()
        if du.shape != self._force.shape:
            raise ConfigError(f"du のサイズが不正: {du.shape} != {self._force.shape}")
        self._du = du.copy()
        self._dlam = float(dlam)

    def set_step_index(self, step_index: int) -> None:
        if step_index < 0:
            raise ConfigError(f"ステップ番号は非負: {step_index}")
        self._step_index = int(step_index)

    def set_length(self, length: float) -> None:
        if not length > 0:
            raise ConfigError(f"弧長は正値: {length}")
        self._length = float(length)

    def set_indicator(self, value: float) -> None:
        """安定指標を設定する（次の compute_stability で前回値になる）."""
        self._indicator = float(value)

    # ----------------------------------------------------------------
    # コールバックの拘束適用
    # ----------------------------------------------------------------

    def _tangent(self, u: np.ndarray) -> sp.csr_matrix:
        K = self._jacobian(u)
        if self._fixed.size:
            K = apply_bc(K, self._force, self._fixed).K
        self._last_tangent = sp.csr_matrix(K, dtype=float)
        return self._last_tangent

    def _residual_vec(self, u: np.ndarray, lam: float) -> np.ndarray:
        R = np.asarray(self._residual(u, lam, self._force), dtype=float).copy()
        R[self._fixed] = 0.0
        return R

    def _factorize(self, K: sp.spmatrix) -> TangentFactorization:
        try:
            return TangentFactorization(K, self.config.solver)
        except RuntimeError as exc:
            # SuperLU: "Factor is exactly singular"
            raise ConvergenceError(
                f"接線剛性が特異です: {exc}", reason="singular_tangent"
            ) from exc

    def _residual_ref(self, lam: float) -> float:
        ref = abs(lam) * float(np.linalg.norm(self._force))
        if ref < 1e-30:
            ref = float(np.linalg.norm(self._force))
        return ref

    # ----------------------------------------------------------------
    # 予測子・修正子
    # ----------------------------------------------------------------

    def _psi2ff(self) -> float:
        psi = self.config.scaling
        return psi * psi * float(self._force @ self._force)

    def _predictor(self, du_t: np.ndarray) -> tuple[np.ndarray, float]:
        cfg = self.config
        dl = self._length
        if cfg.method == ArcLengthMethod.LOAD_CONTROL:
            return dl * du_t, dl

        psi2ff = self._psi2ff()
        old_norm2 = float(self._du @ self._du) + psi2ff * self._dlam**2
        use_secant = self._force_secant or cfg.predictor == PredictorType.SECANT
        if use_secant and old_norm2 > 0.0:
            scale = dl / np.sqrt(old_norm2)
            return scale * self._du, scale * self._dlam

        # 接線予測子: 前ステップと同じ向きに進む
        direction = float(du_t @ self._du) + psi2ff * self._dlam
        sign = -1.0 if direction < 0.0 else 1.0
        d_lam = sign * dl / np.sqrt(float(du_t @ du_t) + psi2ff)
        return d_lam * du_t, d_lam

    def _corrector(
        self,
        fact: TangentFactorization,
        R: np.ndarray,
        DU: np.ndarray,
        DL: float,
        DU_pred: np.ndarray,
        DL_pred: float,
    ) -> tuple[np.ndarray, float]:
        """1 回の修正量 (δu, δλ) を返す."""
        cfg = self.config
        method = cfg.method
        F = self._force
        psi2ff = self._psi2ff()

        if method == ArcLengthMethod.EXTENDED:
            # 縁付き行列 [[K, -F], [2Δuᵀ, 2ψ²Δλ F·F]] を一括で解く
            g = float(DU @ DU) + psi2ff * DL**2 - self._length**2
            A = sp.bmat(
                [
                    [fact.K, sp.csr_matrix(-F.reshape(-1, 1))],
                    [sp.csr_matrix(2.0 * DU.reshape(1, -1)), sp.csr_matrix([[2.0 * psi2ff * DL]])],
                ],
                format="csc",
            )
            sol = spla.spsolve(A, np.concatenate([-R, [-g]]))
            return sol[:-1], float(sol[-1])

        du_bar = fact.solve(-R)
        if method == ArcLengthMethod.LOAD_CONTROL:
            return du_bar, 0.0

        du_t = fact.solve(F)

        if method == ArcLengthMethod.RIKS:
            d_lam = -float(DU_pred @ du_bar) / (float(DU_pred @ du_t) + psi2ff * DL_pred)
            return du_bar + d_lam * du_t, d_lam

        if method == ArcLengthMethod.CONSISTENT_CRISFIELD:
            g = float(DU @ DU) + psi2ff * DL**2 - self._length**2
            d_lam = -(g + 2.0 * float(DU @ du_bar)) / (
                2.0 * float(DU @ du_t) + 2.0 * psi2ff * DL
            )
            return du_bar + d_lam * du_t, d_lam

        # Crisfield: ||Δu + δū + δλ·δu_t||² + ψ²(Δλ + δλ)²F·F = Δl²
        v = DU + du_bar
        a1 = float(du_t @ du_t) + psi2ff
        a2 = 2.0 * float(v @ du_t) + 2.0 * psi2ff * DL
        a3 = float(v @ v) + psi2ff * DL**2 - self._length**2
        disc = a2**2 - 4.0 * a1 * a3
        if disc < 0.0:
            raise ConvergenceError(
                f"弧長拘束の判別式が負です (disc={disc:.3e})",
                reason="negative_discriminant",
            )
        sqrt_disc = np.sqrt(disc)
        roots = ((-a2 + sqrt_disc) / (2.0 * a1), (-a2 - sqrt_disc) / (2.0 * a1))

        # 基準増分との余弦が大きい根を選ぶ
        if cfg.angle_method == AngleMethod.STEP and float(self._du @ self._du) > 0.0:
            ref_u, ref_l = self._du, self._dlam
        else:
            ref_u, ref_l = DU, DL
        scores = [
            float(ref_u @ (v + r * du_t)) + psi2ff * ref_l * (DL + r) for r in roots
        ]
        d_lam = roots[0] if scores[0] >= scores[1] else roots[1]
        return du_bar + d_lam * du_t, d_lam

    def _advance(self) -> StepInfo:
        """予測子と修正子で1ステップ進める. 失敗時は解を変更せずに例外を送出する."""
        cfg = self.config
        u0, lam0 = self._u, self._lam
        F = self._force
        step_no = self._step_index + 1

        fact = self._factorize(self._tangent(u0))
        DU, DL = self._predictor(fact.solve(F))
        self._force_secant = False
        DU_pred, DL_pred = DU.copy(), DL

        tol_u = cfg.tol_u_effective
        tol_f = cfg.tol_f_effective
        res_rel = np.inf
        correction = np.inf

        R = self._residual_vec(u0 + DU, lam0 + DL)
        for it in range(1, cfg.max_iter + 1):
            if not np.all(np.isfinite(R)):
                raise ConvergenceError(
                    "残差が非有限になりました",
                    iterations=it - 1,
                    reason="non_finite",
                )

            # 接線剛性の更新（準 Newton では指定間隔でのみ）
            if not cfg.quasi:
                fact = self._factorize(self._tangent(u0 + DU))
            elif cfg.quasi_iterations > 0 and it % cfg.quasi_iterations == 0:
                fact = self._factorize(self._tangent(u0 + DU))

            du, d_lam = self._corrector(fact, R, DU, DL, DU_pred, DL_pred)
            du *= cfg.relaxation
            d_lam *= cfg.relaxation
            DU = DU + du
            DL = DL + d_lam

            R = self._residual_vec(u0 + DU, lam0 + DL)
            res_rel = float(np.linalg.norm(R)) / self._residual_ref(lam0 + DL)
            correction = float(np.linalg.norm(du)) / max(float(np.linalg.norm(DU)), 1e-30)

            if cfg.verbose:
                print(
                    f"  Step {step_no}, λ={lam0 + DL:.6f}, iter {it}, "
                    f"||R||/||f|| = {res_rel:.3e}, ||du||/||Δu|| = {correction:.3e}"
                )

            if res_rel < tol_f and correction < tol_u:
                self._u = u0 + DU
                self._lam = lam0 + DL
                self._du = DU
                self._dlam = DL
                return StepInfo(
                    iterations=it, residual=res_rel, correction=correction, length=self._length
                )

        raise ConvergenceError(
            f"Step {step_no}: {cfg.max_iter} 反復で収束しませんでした "
            f"(||R||/||f|| = {res_rel:.3e})",
            iterations=cfg.max_iter,
            residual=res_rel,
        )

    def step(self) -> StepInfo:
        """弧長法の1ステップを実行する.

        Returns:
            StepInfo: 反復回数・最終残差・修正量・使用した弧長

        Raises:
            ConvergenceError: MaxIter 反復で収束しない・判別式が負・残差が非有限の場合。
                解は直前の収束点のまま残る。
        """
        self._check_initialized()
        self._state = IteratorState.STEPPING
        self._converged = False
        try:
            info = self._advance()
        except ConvergenceError as exc:
            self._iterations = exc.iterations
            self._state = IteratorState.NON_CONVERGED
            if self.config.verbose:
                print(f"  WARNING: {exc}")
            raise

        self._converged = True
        self._iterations = info.iterations
        self._step_index += 1
        self._last_info = info

        if self.config.adaptive_length:
            cfg = self.config
            factor = np.sqrt(cfg.adaptive_iterations / max(info.iterations, 1))
            self._length = float(
                np.clip(
                    self._length * factor,
                    cfg.min_length_ratio * cfg.length,
                    cfg.max_length_ratio * cfg.length,
                )
            )
        return info

    # ----------------------------------------------------------------
    # 安定判定
    # ----------------------------------------------------------------

    def _stability_indicator(self, K: sp.spmatrix) -> float:
        if self.config.bifurcation_method == BifurcationMethod.DETERMINANT:
            sig = pivot_signature(K)
            return sig.sign * sig.min_abs_pivot
        return smallest_eigenpair(K, dense_threshold=self.config.dense_threshold).value

    def compute_stability(self, u: np.ndarray, quasi_newton: bool = False) -> float:
        """u での安定指標を計算する.

        行列式法: 符号付き最小ピボット sign(det K)·min|d_i|
        固有値法: 接線剛性の絶対値最小の固有値

        Args:
            u: 評価点
            quasi_newton: True なら直前に組み立てた接線剛性を再利用する
        """
        self._check_initialized()
        if quasi_newton and self._last_tangent is not None:
            K = self._last_tangent
        else:
            K = self._tangent(np.asarray(u, dtype=float))
        self._indicator_prev = self._indicator
        self._indicator = float(self._stability_indicator(K))
        self._state = IteratorState.UNSTABLE if self._indicator < 0.0 else IteratorState.STABLE
        if self.config.verbose:
            print(f"  indicator: old = {self._indicator_prev}, new = {self._indicator:.6e}")
        return self._indicator

    def stability_change(self) -> bool:
        """前回と今回の安定指標の符号が厳密に反転したか."""
        if self._indicator is None or not self._indicator_prev:
            return False
        return self._indicator * self._indicator_prev < 0.0

    # ----------------------------------------------------------------
    # 特異点探索・分岐切替
    # ----------------------------------------------------------------

    def compute_singular_point(
        self,
        tolerance: float,
        max_bisections: int,
        u_last: np.ndarray,
        lam_last: float,
        target_tol: float,
        branch_tol: float = 0.0,
        extended: bool = False,
    ) -> SingularPoint:
        """最後の安定点 (u_last, λ_last) から弧長を二分して特異点を求める.

        現在の解（符号変化を検出した点）と直前ステップの増分を探索方向とし、
        |指標| < tolerance または弧長 < target_tol で終了する。

        Args:
            tolerance: 指標の許容値
            max_bisections: 二分法の最大回数
            u_last: 符号変化前の最後の点の変位
            lam_last: 同 荷重係数
            target_tol: 弧長（増分ノルム）の下限
            branch_tol: |φ·F| <= branch_tol·||F|| なら分岐点と判定
            extended: True なら拡大系反復で特異点を精密化する

        Returns:
            SingularPoint: 特異点

        Raises:
            NonConvergenceError: max_bisections 回以内に終わらない場合
            ConvergenceError: 二分法のステップが収束しない場合。
                いずれも解は符号変化を検出した点に戻し、弧長は呼び出し前の値に戻す。
        """
        self._check_initialized()
        self._state = IteratorState.LOCATING_SINGULAR_POINT
        cfg = self.config

        direction_u, direction_l = self._du.copy(), self._dlam
        if cfg.method == ArcLengthMethod.LOAD_CONTROL:
            # 荷重制御では弧長 = Δλ
            length = abs(direction_l)
        else:
            length = float(
                np.sqrt(float(direction_u @ direction_u) + self._psi2ff() * direction_l**2)
            )
        if length <= 0.0:
            length = self._length
        start_u = np.asarray(u_last, dtype=float).copy()
        start_l = float(lam_last)
        ind_start = float(self._stability_indicator(self._tangent(start_u)))
        saved_length = self._length
        crossing = (self._u.copy(), self._lam, self._du.copy(), self._dlam)

        found = False
        n_bisect = 0
        ind = self._indicator if self._indicator is not None else ind_start
        try:
            for n_bisect in range(1, max_bisections + 1):
                length *= 0.5
                self.set_solution(start_u, start_l)
                self.set_solution_step(direction_u, direction_l)
                self.set_length(length)
                self._force_secant = True
                self._advance()
                ind = float(self._stability_indicator(self._tangent(self._u)))

                if cfg.verbose:
                    print(
                        f"  Bisection {n_bisect}: λ={self._lam:.8f}, "
                        f"indicator={ind:.3e}, length={length:.3e}"
                    )
                if abs(ind) < tolerance:
                    found = True
                    break
                if ind * ind_start > 0.0:
                    # 符号変化点はさらに先: 始点を進める
                    start_u, start_l = self._u.copy(), self._lam
                    direction_u, direction_l = self._du.copy(), self._dlam
                    ind_start = ind
                if length < target_tol or float(np.linalg.norm(self._du)) < target_tol:
                    found = True
                    break
        except ConvergenceError:
            self._restore_crossing(crossing)
            raise
        finally:
            self._length = saved_length
            self._force_secant = False

        if not found:
            self._restore_crossing(crossing)
            raise NonConvergenceError(
                f"特異点が {max_bisections} 回の二分法で求まりませんでした (indicator={ind:.3e})",
                iterations=max_bisections,
                residual=abs(ind),
                reason="bisection",
            )

        if extended:
            phi = self._extended_refine()
            ind = float(self._stability_indicator(self._tangent(self._u)))
        else:
            phi = smallest_eigenpair(self._tangent(self._u), dense_threshold=cfg.dense_threshold).vector

        phi = phi / np.linalg.norm(phi)
        self._phi = phi
        self._indicator = ind
        F = self._force
        point_type = (
            "bifurcation"
            if abs(float(phi @ F)) <= branch_tol * float(np.linalg.norm(F))
            else "limit"
        )
        self._singular_point = SingularPoint(
            u=self._u.copy(),
            lam=self._lam,
            mode=phi.copy(),
            indicator=ind,
            point_type=point_type,
            bisections=n_bisect,
        )
        if cfg.verbose:
            print(f"  Singular point ({point_type}): λ={self._lam:.8f}, indicator={ind:.3e}")
        return self._singular_point

    def _restore_crossing(self, crossing: tuple[np.ndarray, float, np.ndarray, float]) -> None:
        """探索失敗時に符号変化を検出した点へ戻す."""
        self._u, self._lam, self._du, self._dlam = crossing
        self._state = IteratorState.NON_CONVERGED

    def _directional_tangent(self, u: np.ndarray, phi: np.ndarray, du: np.ndarray) -> np.ndarray:
        """(K(u)·φ) の u 方向微分 G·du を前進差分で求める."""
        du_norm = float(np.linalg.norm(du))
        if du_norm == 0.0:
            return np.zeros_like(u)
        eps = np.sqrt(np.finfo(float).eps) * max(1.0, float(np.linalg.norm(u))) / du_norm
        K0 = self._tangent(u)
        K1 = self._tangent(u + eps * du)
        return (K1 @ phi - K0 @ phi) / eps

    def _extended_refine(self) -> np.ndarray:
        """拡大系 (R = 0, K·φ = 0, l·φ = 1) の Newton 反復（Wriggers–Simo）.

        二分法で得た点を初期値とし、(u, λ, φ) を同時に更新する。
        """
        cfg = self.config
        F = self._force
        u, lam = self._u.copy(), self._lam
        K = self._tangent(u)
        phi = smallest_eigenpair(K, dense_threshold=cfg.dense_threshold).vector
        phi = phi / np.linalg.norm(phi)
        l_vec = phi.copy()
        tol = cfg.tol_f_effective

        for it in range(1, cfg.max_iter + 1):
            R = self._residual_vec(u, lam)
            K = self._tangent(u)
            res_rel = float(np.linalg.norm(R)) / self._residual_ref(lam)
            null_res = float(np.linalg.norm(K @ phi)) / max(float(np.linalg.norm(phi)), 1e-30)
            if cfg.verbose:
                print(
                    f"  Extended iter {it}: λ={lam:.10f}, ||R||/||f|| = {res_rel:.3e}, "
                    f"||Kφ|| = {null_res:.3e}"
                )
            if res_rel < tol and null_res < tol:
                self._u, self._lam = u, lam
                return phi

            fact = self._factorize(K)
            du_1 = fact.solve(-R)
            du_2 = fact.solve(F)
            h1 = fact.solve(self._directional_tangent(u, phi, du_1))
            h2 = fact.solve(self._directional_tangent(u, phi, du_2))
            d_lam = -(1.0 + float(l_vec @ h1)) / float(l_vec @ h2)

            u = u + du_1 + d_lam * du_2
            lam = lam + d_lam
            phi = -h1 - d_lam * h2

        self._state = IteratorState.NON_CONVERGED
        raise ConvergenceError(
            f"拡大系反復が {cfg.max_iter} 反復で収束しませんでした",
            iterations=cfg.max_iter,
            reason="extended",
        )

    def switch_branch(self) -> None:
        """特異点から零空間ベクトル方向へ摂動し、次の step() を分岐経路へ向ける.

        u ← u* + τ·max(||u*||, 1)·φ/||φ||,  Δu_old ← φ/||φ||·Δl,  Δλ_old ← 0
        """
        self._check_initialized()
        if self._phi is None:
            raise ConfigError("switch_branch() の前に compute_singular_point() が必要です。")
        V = self._phi / np.linalg.norm(self._phi)
        scale = self.config.perturbation * max(float(np.linalg.norm(self._u)), 1.0)
        self._u = self._u + scale * V
        self._du = V * self._length
        self._dlam = 0.0
        self._force_secant = True
        self._indicator = 0.0
        self._indicator_prev = None
        self._state = IteratorState.BRANCH_SWITCHED
        if self.config.verbose:
            print(f"  Branch switched: perturbation = {scale:.3e}")


__all__ = [
    "ArcLengthIterator",
    "IteratorState",
]
