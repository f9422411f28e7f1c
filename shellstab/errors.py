"""例外クラス定義.

  ConfigError          — オプション・コールバックの不備（initialize 前に検出）
  ConvergenceError     — Newton 修正子 / 固有値反復が反復上限内に収束しない
  NonConvergenceError  — 特異点探索（二分法）が回数上限を超えた

エンジンは失敗したステップを内部で再試行しない。
弧長の縮小などの再試行方針は呼び出し側（continuation.trace_path 等）が持つ。
"""

from __future__ import annotations


class ConfigError(ValueError):
    """不正または欠落したオプション・コールバック."""


class ConvergenceError(RuntimeError):
    """反復解法が許容誤差を満たさずに反復上限に達した.

    Attributes:
        iterations: 実行した反復回数
        residual: 最後に評価した残差ノルム（相対値）
        reason: 失敗理由の短い識別子
            ("max_iter", "negative_discriminant", "non_finite", "singular_tangent",
             "arpack", "power", "bisection" など)
    """

    def __init__(
        self,
        message: str,
        *,
        iterations: int = 0,
        residual: float = float("nan"),
        reason: str = "max_iter",
    ) -> None:
        super().__init__(message)
        self.iterations = iterations
        self.residual = residual
        self.reason = reason


class NonConvergenceError(ConvergenceError):
    """特異点の二分法探索が max_bisections 回以内に終わらなかった."""


__all__ = [
    "ConfigError",
    "ConvergenceError",
    "NonConvergenceError",
]
