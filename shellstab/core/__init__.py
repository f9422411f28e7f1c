"""shellstab.core - コールバック規約・解状態・戻り値型.

  JacobianCallback / ResidualCallback / NonlinearOperator — 外部アセンブラの呼び出し規約
  SolutionState                                           — 平衡経路上の1点
  LinearSolveResult / DirichletResult / PivotSignature /
  StepInfo / EigenMode / SingularPoint                     — 戻り値型
"""

from shellstab.core.callbacks import JacobianCallback, NonlinearOperator, ResidualCallback
from shellstab.core.results import (
    DirichletResult,
    EigenMode,
    LinearSolveResult,
    PivotSignature,
    SingularPoint,
    StepInfo,
)
from shellstab.core.state import SolutionState

__all__ = [
    "JacobianCallback",
    "ResidualCallback",
    "NonlinearOperator",
    "SolutionState",
    "LinearSolveResult",
    "DirichletResult",
    "PivotSignature",
    "StepInfo",
    "EigenMode",
    "SingularPoint",
]
