"""外部アセンブラとのコールバック・インタフェース定義.

有限要素アセンブリ（接線剛性・内力）は本パッケージの外にあり、
ここで定義する呼び出し規約だけを介して利用する。

  JacobianCallback    — u → K_T(u)            （疎行列）
  ResidualCallback    — (u, λ, F) → R          （R = f_int(u) - λ·F）
  NonlinearOperator   — u → K_NL(u)           （線形座屈の非線形剛性）

Protocol なので関数・ラムダ・__call__ を持つオブジェクトのいずれでも適合する。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np
import scipy.sparse as sp


@runtime_checkable
class JacobianCallback(Protocol):
    """接線剛性行列 K_T(u) = ∂f_int/∂u を返すコールバック."""

    def __call__(self, u: np.ndarray) -> sp.spmatrix:
        ...


@runtime_checkable
class ResidualCallback(Protocol):
    """弧長法の残差 R(u, λ) = f_int(u) - λ·F を返すコールバック.

    Args:
        u: (ndof,) 変位
        lam: 荷重係数 λ
        force: (ndof,) 参照荷重ベクトル F
    """

    def __call__(self, u: np.ndarray, lam: float, force: np.ndarray) -> np.ndarray:
        ...


@runtime_checkable
class NonlinearOperator(Protocol):
    """参照解 u における非線形（幾何）剛性 K_NL(u) を返すコールバック."""

    def __call__(self, u: np.ndarray) -> sp.spmatrix:
        ...
