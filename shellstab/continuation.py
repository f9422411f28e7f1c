"""弧長法による平衡経路追跡ドライバ.

ArcLengthIterator を用いたステップループ（呼び出し側の制御）:

  - ConvergenceError で弧長を半減して再試行（max_cutbacks 回まで）
  - 収束ステップごとに安定指標を評価（detect_stability）
  - 符号変化で特異点を二分法探索（locate_singular）
  - 分岐点なら零空間ベクトル方向に分岐切替（switch_branch）
  - λ が lambda_max に達したら終了
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from shellstab.arc_length import ArcLengthIterator
from shellstab.config import ArcLengthConfig
from shellstab.core.callbacks import JacobianCallback, ResidualCallback
from shellstab.core.results import SingularPoint
from shellstab.errors import ConvergenceError
from shellstab.timing import AssemblyTimer


@dataclass
class ArcLengthResult:
    """経路追跡の結果.

    Attributes:
        u: (ndof,) 最終変位ベクトル
        lam: 最終荷重係数 λ
        converged: 全ステップが収束したかどうか
        n_steps: 収束したステップ数
        total_iterations: 全ステップの合計修正子反復回数
        load_history: 各ステップの荷重係数 λ の履歴
        displacement_history: 各ステップの変位ベクトルの履歴
        indicator_history: 各ステップの安定指標（detect_stability=True のとき）
        singular_points: 検出した特異点
        assembly_time: コールバック（アセンブリ）の合計時間 [s]
    """

    u: np.ndarray
    lam: float
    converged: bool
    n_steps: int
    total_iterations: int
    load_history: list[float] = field(default_factory=list)
    displacement_history: list[np.ndarray] = field(default_factory=list)
    indicator_history: list[float] = field(default_factory=list)
    singular_points: list[SingularPoint] = field(default_factory=list)
    assembly_time: float = 0.0


def trace_path(
    jacobian: JacobianCallback,
    residual: ResidualCallback,
    force: np.ndarray,
    config: ArcLengthConfig | None = None,
    *,
    n_steps: int = 50,
    fixed_dofs: np.ndarray | None = None,
    u0: np.ndarray | None = None,
    lambda0: float = 0.0,
    lambda_max: float | None = None,
    max_cutbacks: int = 5,
    detect_stability: bool = False,
    locate_singular: bool = False,
    branch_switch: bool = False,
    singular_tol: float = 1e-4,
    max_bisections: int = 30,
    target_tol: float = 1e-10,
    branch_tol: float = 1e-6,
    extended: bool = False,
    show_progress: bool = True,
    timer: AssemblyTimer | None = None,
) -> ArcLengthResult:
    """弧長法で平衡経路を追跡する.

    Args:
        jacobian: u → K(u) を返すコールバック（疎行列）
        residual: (u, λ, F) → f_int(u) - λ·F を返すコールバック
        force: (ndof,) 参照荷重ベクトル F
        config: エンジン設定
        n_steps: 収束ステップ数の上限
        fixed_dofs: 拘束 DOF
        u0: 初期変位（None = ゼロ）
        lambda0: 初期荷重係数
        lambda_max: 荷重係数の上限（None = 制限なし）
        max_cutbacks: 各ステップの最大弧長カットバック回数
        detect_stability: 各ステップで安定指標を評価する
        locate_singular: 指標の符号変化で特異点を探索する
        branch_switch: 分岐点で分岐経路へ切り替える
        singular_tol: 特異点の指標許容値
        max_bisections: 二分法の最大回数
        target_tol: 二分法の弧長下限
        branch_tol: 分岐点・極限点の判定閾値
        extended: 拡大系反復で特異点を精密化する
        show_progress: 進捗表示
        timer: アセンブリ時間の集計先（None なら内部で生成）

    Returns:
        ArcLengthResult: 解析結果
    """
    cfg = config if config is not None else ArcLengthConfig()
    timer = timer if timer is not None else AssemblyTimer()
    it = ArcLengthIterator(
        timer.wrap(jacobian, "jacobian"),
        timer.wrap(residual, "residual"),
        force,
        cfg,
        fixed_dofs=fixed_dofs,
    )
    it.initialize()
    if u0 is not None or lambda0 != 0.0:
        it.set_solution(u0 if u0 is not None else np.zeros_like(it.force), lambda0)

    load_history: list[float] = []
    disp_history: list[np.ndarray] = []
    ind_history: list[float] = []
    singular_points: list[SingularPoint] = []
    total_iter = 0

    def _result(converged: bool) -> ArcLengthResult:
        return ArcLengthResult(
            u=it.solution_u.copy(),
            lam=it.solution_l,
            converged=converged,
            n_steps=len(load_history),
            total_iterations=total_iter,
            load_history=load_history,
            displacement_history=disp_history,
            indicator_history=ind_history,
            singular_points=singular_points,
            assembly_time=timer.total,
        )

    def _reached_lambda_max(lam: float) -> bool:
        if lambda_max is None or lam < lambda_max:
            return False
        if show_progress:
            print(f"  λ = {lam:.6f} >= lambda_max = {lambda_max}. 終了。")
        return True

    if detect_stability:
        it.compute_stability(it.solution_u)

    for step in range(1, n_steps + 1):
        u_old, lam_old = it.solution_u.copy(), it.solution_l
        du_old, dl_old = it.solution_du.copy(), it.solution_dl
        ind_old = it.indicator
        length = it.length

        converged_step = False
        for cutback in range(max_cutbacks + 1):
            try:
                it.step()
                converged_step = True
                break
            except ConvergenceError as exc:
                total_iter += exc.iterations
                if cutback == max_cutbacks:
                    break
                length *= 0.5
                it.set_solution(u_old, lam_old)
                it.set_solution_step(du_old, dl_old)
                it.set_length(length)
                if show_progress:
                    print(
                        f"  Step {step}: {exc.reason}。弧長を {length:.4e} に縮小 "
                        f"(cutback {cutback + 1})"
                    )

        if not converged_step:
            if show_progress:
                print(f"  Step {step}: 収束せず。")
            return _result(False)

        total_iter += it.iterations
        if show_progress:
            info = it.step_info
            print(
                f"  Step {step}, λ={it.solution_l:.6f}, iter {info.iterations}, "
                f"||R||/||f|| = {info.residual:.3e}"
            )

        if detect_stability:
            it.compute_stability(it.solution_u)
            if it.stability_change() and locate_singular:
                u_cross, lam_cross = it.solution_u.copy(), it.solution_l
                du_cross, dl_cross = it.solution_du.copy(), it.solution_dl
                ind_cross, len_cross = it.indicator, it.length
                point = it.compute_singular_point(
                    singular_tol,
                    max_bisections,
                    u_old,
                    lam_old,
                    target_tol,
                    branch_tol=branch_tol,
                    extended=extended,
                )
                singular_points.append(point)
                if show_progress:
                    print(f"  {point.point_type} point at λ={point.lam:.6f}")

                if branch_switch and point.point_type == "bifurcation":
                    it.switch_branch()
                    it.set_length(len_cross)
                    load_history.append(point.lam)
                    disp_history.append(point.u.copy())
                    ind_history.append(point.indicator)
                    if _reached_lambda_max(point.lam):
                        break
                    continue

                # 分岐しない: 符号変化を検出した点から追跡を続ける
                it.set_solution(u_cross, lam_cross)
                it.set_solution_step(du_cross, dl_cross)
                it.set_length(len_cross)
                it.set_indicator(ind_cross)
            ind_history.append(float(it.indicator))

        load_history.append(it.solution_l)
        disp_history.append(it.solution_u.copy())

        if _reached_lambda_max(it.solution_l):
            break

    return _result(True)


__all__ = ["ArcLengthResult", "trace_path"]
