"""メソッド戻り値の型定義.

各モジュールの公開メソッドが返すデータ構造を NamedTuple で統一的に定義する。
"""

from __future__ import annotations

from typing import Any, NamedTuple

import numpy as np
import scipy.sparse as sp


class LinearSolveResult(NamedTuple):
    """線形ソルバーの結果.

    Attributes:
        u: (ndof,) 解ベクトル
        info: ソルバー情報辞書 (method, nit, residual_norm, setup_time, solve_time 等)
    """

    u: np.ndarray
    info: dict[str, Any]


class DirichletResult(NamedTuple):
    """Dirichlet 境界条件適用後の結果.

    Attributes:
        K: 拘束適用後の剛性行列 (CSR)
        f: 拘束適用後の右辺ベクトル (ndof,)
    """

    K: sp.csr_matrix
    f: np.ndarray


class PivotSignature(NamedTuple):
    """対称 LDLᵀ 分解のピボット情報（Sylvester の慣性則）.

    Attributes:
        sign: det(K) の符号 (+1 / -1 / 0)
        min_abs_pivot: ピボットの絶対値の最小値
        n_negative: 負のピボット数（= 負の固有値数）
    """

    sign: float
    min_abs_pivot: float
    n_negative: int


class StepInfo(NamedTuple):
    """弧長法1ステップの収束情報.

    Attributes:
        iterations: 修正子の反復回数
        residual: 最終相対残差 ||R|| / ||λF||
        correction: 最終相対修正量 ||δu|| / ||Δu||
        length: このステップで使った弧長
    """

    iterations: int
    residual: float
    correction: float
    length: float


class EigenMode(NamedTuple):
    """固有対（固有値と固有ベクトル）.

    Attributes:
        value: 固有値
        vector: (ndof,) 固有ベクトル
    """

    value: float
    vector: np.ndarray


class SingularPoint(NamedTuple):
    """特異点（接線剛性が特異となる平衡点）.

    Attributes:
        u: (ndof,) 変位
        lam: 荷重係数
        mode: (ndof,) 正規化された零空間ベクトル φ
        indicator: 特異点での安定指標
        point_type: "bifurcation"（分岐点, φ·F ≈ 0）または "limit"（極限点）
        bisections: 要した二分法の回数
    """

    u: np.ndarray
    lam: float
    mode: np.ndarray
    indicator: float
    point_type: str
    bisections: int
