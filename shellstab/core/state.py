"""平衡経路上の解状態.

弧長法の1点（変位 u, 荷重係数 λ）と、その点に至った弧長増分
（Δu, Δλ）、ステップ番号と次の弧長を保持する。再開用チェックポイントの
保存・読込単位でもある。
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class SolutionState:
    """平衡経路上の解状態.

    収束時には (u, lam) が残差方程式 R(u, λ) = 0 を許容誤差内で満たす。

    Attributes:
        u: (ndof,) 変位ベクトル
        lam: 荷重係数 λ
        delta_u: (ndof,) 直前ステップの変位増分 Δu
        delta_lam: 直前ステップの荷重係数増分 Δλ
        step_index: 収束済みステップ数
        length: 次のステップで使う弧長（None なら設定値）
    """

    u: np.ndarray
    lam: float = 0.0
    delta_u: np.ndarray = field(default_factory=lambda: np.zeros(0))
    delta_lam: float = 0.0
    step_index: int = 0
    length: float | None = None

    def __post_init__(self) -> None:
        self.u = np.asarray(self.u, dtype=float).ravel()
        self.delta_u = np.asarray(self.delta_u, dtype=float).ravel()
        if self.delta_u.size == 0:
            self.delta_u = np.zeros_like(self.u)
        if self.delta_u.shape != self.u.shape:
            raise ValueError(
                f"delta_u のサイズが u と一致しません: {self.delta_u.shape} != {self.u.shape}"
            )

    @classmethod
    def zeros(cls, ndof: int) -> SolutionState:
        """ゼロ初期状態を生成する."""
        return cls(u=np.zeros(ndof), lam=0.0)

    @property
    def ndof(self) -> int:
        return int(self.u.shape[0])

    def copy(self) -> SolutionState:
        """深いコピーを返す."""
        return SolutionState(
            u=self.u.copy(),
            lam=float(self.lam),
            delta_u=self.delta_u.copy(),
            delta_lam=float(self.delta_lam),
            step_index=int(self.step_index),
            length=self.length,
        )


__all__ = ["SolutionState"]
