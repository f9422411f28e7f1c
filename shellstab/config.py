"""解析設定データクラス.

弧長法エンジン（ArcLengthConfig）と固有値ソルバー（EigenConfig）の設定を
型付きデータクラスで保持する。生成時（__post_init__）に値域を検証し、
不正値は ConfigError を送出する。

フラットなオプション名（"Method", "Length", "TolU", "ncvFac" など）からの
生成・適用もサポートする:

    cfg = ArcLengthConfig.from_options({"Method": 2, "Length": 0.5})
    cfg = cfg.with_options({"AdaptiveLength": True})
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from enum import IntEnum
from typing import Any

from shellstab.errors import ConfigError

# ====================================================================
# 選択子（整数オプション値と 1:1 対応）
# ====================================================================


class LinearSolverType(IntEnum):
    """弧長法の線形ソルバー族."""

    DIRECT = 0  # 疎 LU（SuperLU）
    CG_AMG = 1  # pyamg 前処理付き CG


class BifurcationMethod(IntEnum):
    """不安定化の検出方法."""

    DETERMINANT = 0
    EIGENVALUE = 1


class ArcLengthMethod(IntEnum):
    """経路追跡の拘束式."""

    LOAD_CONTROL = 0
    RIKS = 1
    CRISFIELD = 2
    CONSISTENT_CRISFIELD = 3
    EXTENDED = 4


class AngleMethod(IntEnum):
    """Crisfield 根選択の角度基準."""

    STEP = 0  # 前ステップの増分
    ITERATION = 1  # 前反復の増分


class PredictorType(IntEnum):
    """予測子の種類."""

    TANGENT = 0
    SECANT = 1


class SpectraMode(IntEnum):
    """疎固有値解法のスペクトル変換."""

    CHOLESKY = 0
    REGULAR_INVERSE = 1
    SHIFT_INVERT = 2
    BUCKLING = 3
    CAYLEY = 4


class SelectionRule(IntEnum):
    """固有値の選択・並べ替え規則."""

    LARGEST_MAGN = 0
    LARGEST_REAL = 1
    LARGEST_IMAG = 2
    LARGEST_ALGE = 3
    SMALLEST_MAGN = 4
    SMALLEST_REAL = 5
    SMALLEST_IMAG = 6
    SMALLEST_ALGE = 7
    BOTH_ENDS = 8


def _as_enum(enum_cls: type[IntEnum], value: Any, name: str) -> IntEnum:
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError):
        valid = ", ".join(f"{m.value}: {m.name}" for m in enum_cls)
        raise ConfigError(f"{name} は [{valid}] のいずれか: {value!r}") from None


def _apply_option_table(
    cls: type,
    table: Mapping[str, str],
    options: Mapping[str, Any],
) -> dict[str, Any]:
    """オプション名 → フィールド名に変換する（フィールド名そのままも受理）."""
    field_names = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in options.items():
        if key in table:
            kwargs[table[key]] = value
        elif key in field_names:
            kwargs[key] = value
        else:
            raise ConfigError(f"未知のオプション: '{key}'")
    return kwargs


# ====================================================================
# 弧長法エンジンの設定
# ====================================================================

_ARC_LENGTH_OPTIONS: dict[str, str] = {
    "Solver": "solver",
    "BifurcationMethod": "bifurcation_method",
    "Method": "method",
    "Length": "length",
    "AngleMethod": "angle_method",
    "AdaptiveLength": "adaptive_length",
    "AdaptiveIterations": "adaptive_iterations",
    "Perturbation": "perturbation",
    "Scaling": "scaling",
    "Predictor": "predictor",
    "Tol": "tol",
    "TolU": "tol_u",
    "TolF": "tol_f",
    "MaxIter": "max_iter",
    "Quasi": "quasi",
    "QuasiIterations": "quasi_iterations",
    "Relaxation": "relaxation",
    "Verbose": "verbose",
}


@dataclass(frozen=True)
class ArcLengthConfig:
    """弧長法エンジンの設定.

    Attributes:
        solver: 線形ソルバー族（0: 疎 LU, 1: pyamg 前処理付き CG）
        bifurcation_method: 不安定化検出（0: 行列式, 1: 固有値）
        method: 拘束式（0: 荷重制御, 1: Riks, 2: Crisfield,
            3: consistent Crisfield, 4: 拡大系反復）
        length: 目標弧長 Δl
        angle_method: Crisfield 根選択の基準（0: 前ステップ, 1: 前反復）
        adaptive_length: 反復回数に応じた弧長適応の有効化
        adaptive_iterations: 弧長適応の目標反復回数
        perturbation: 分岐切替時の摂動スケール τ
        scaling: 荷重項の重み ψ（0 = 円筒弧長法）
        predictor: 予測子（0: 接線, 1: 割線）
        tol: 共通収束判定値
        tol_u: 変位修正量の相対収束判定値（None なら tol）
        tol_f: 残差の相対収束判定値（None なら tol）
        max_iter: 1ステップの最大 Newton 反復回数
        quasi: 準 Newton（接線剛性の再利用）の有効化
        quasi_iterations: 接線剛性の更新間隔。0 以下なら予測子の接線のみを使う
        relaxation: Newton 更新の緩和係数 (0, 1]
        verbose: 進捗表示
        min_length_ratio: 弧長適応の下限（length に対する比）
        max_length_ratio: 弧長適応の上限（length に対する比）
        dense_threshold: これ未満の規模では固有値を密行列で求める
    """

    solver: int = LinearSolverType.DIRECT
    bifurcation_method: int = BifurcationMethod.DETERMINANT
    method: int = ArcLengthMethod.CRISFIELD
    length: float = 1e-2
    angle_method: int = AngleMethod.STEP
    adaptive_length: bool = False
    adaptive_iterations: int = 10
    perturbation: float = 1e-3
    scaling: float = 0.0
    predictor: int = PredictorType.SECANT
    tol: float = 1e-6
    tol_u: float | None = None
    tol_f: float | None = None
    max_iter: int = 25
    quasi: bool = False
    quasi_iterations: int = -1
    relaxation: float = 1.0
    verbose: bool = False
    min_length_ratio: float = 0.01
    max_length_ratio: float = 4.0
    dense_threshold: int = 200

    def __post_init__(self) -> None:
        set_ = object.__setattr__
        set_(self, "solver", _as_enum(LinearSolverType, self.solver, "Solver"))
        set_(
            self,
            "bifurcation_method",
            _as_enum(BifurcationMethod, self.bifurcation_method, "BifurcationMethod"),
        )
        set_(self, "method", _as_enum(ArcLengthMethod, self.method, "Method"))
        set_(self, "angle_method", _as_enum(AngleMethod, self.angle_method, "AngleMethod"))
        set_(self, "predictor", _as_enum(PredictorType, self.predictor, "Predictor"))

        if not (self.length > 0 and math.isfinite(self.length)):
            raise ConfigError(f"Length は正値: {self.length}")
        if self.adaptive_iterations < 1:
            raise ConfigError(f"AdaptiveIterations は1以上: {self.adaptive_iterations}")
        if self.perturbation < 0:
            raise ConfigError(f"Perturbation は非負: {self.perturbation}")
        if self.scaling < 0:
            raise ConfigError(f"Scaling は非負: {self.scaling}")
        for name in ("tol", "tol_u", "tol_f"):
            val = getattr(self, name)
            if val is not None and not val > 0:
                raise ConfigError(f"{name} は正値: {val}")
        if self.max_iter < 1:
            raise ConfigError(f"MaxIter は1以上: {self.max_iter}")
        if not (0.0 < self.relaxation <= 1.0):
            raise ConfigError(f"Relaxation は (0, 1]: {self.relaxation}")
        if not (0.0 < self.min_length_ratio <= 1.0 <= self.max_length_ratio):
            raise ConfigError(
                "0 < min_length_ratio <= 1 <= max_length_ratio が必要: "
                f"{self.min_length_ratio}, {self.max_length_ratio}"
            )
        if self.dense_threshold < 0:
            raise ConfigError(f"dense_threshold は非負: {self.dense_threshold}")

    @property
    def tol_u_effective(self) -> float:
        return self.tol if self.tol_u is None else self.tol_u

    @property
    def tol_f_effective(self) -> float:
        return self.tol if self.tol_f is None else self.tol_f

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> ArcLengthConfig:
        """フラットなオプション辞書から生成する."""
        return cls(**_apply_option_table(cls, _ARC_LENGTH_OPTIONS, options))

    def with_options(self, options: Mapping[str, Any]) -> ArcLengthConfig:
        """オプションを上書きした新しい設定を返す（検証は再実行される）."""
        return replace(self, **_apply_option_table(type(self), _ARC_LENGTH_OPTIONS, options))

    def to_options(self) -> dict[str, Any]:
        """オプション名をキーとする辞書に変換する."""
        return {key: getattr(self, name) for key, name in _ARC_LENGTH_OPTIONS.items()}


# ====================================================================
# 固有値ソルバーの設定
# ====================================================================

_EIGEN_OPTIONS: dict[str, str] = {
    "Solver": "solver",
    "selectionRule": "selection_rule",
    "sortRule": "sort_rule",
    "ncvFac": "ncv_fac",
    "Tol": "tol",
    "MaxIter": "max_iter",
    "PowerTol": "power_tol",
    "PowerMaxIter": "power_max_iter",
    "PowerStrict": "power_strict",
    "Verbose": "verbose",
}


@dataclass(frozen=True)
class EigenConfig:
    """固有値ソルバーの設定.

    Attributes:
        solver: スペクトル変換（0: Cholesky, 1: RegularInverse, 2: ShiftInvert,
            3: Buckling, 4: Cayley）
        selection_rule: 求める固有値の選択規則（0-8, 既定 4: SmallestMagn）
        sort_rule: 結果の並べ替え規則（0-8, 既定 4: SmallestMagn）
        ncv_fac: Krylov 部分空間の大きさ係数（ncv = ncv_fac * number）
        tol: ARPACK の収束判定値
        max_iter: ARPACK の最大反復回数
        power_tol: べき乗法の収束判定値
        power_max_iter: べき乗法の最大反復回数
        power_strict: True ならべき乗法の非収束で ConvergenceError を送出
        verbose: 進捗表示
    """

    solver: int = SpectraMode.CHOLESKY
    selection_rule: int = SelectionRule.SMALLEST_MAGN
    sort_rule: int = SelectionRule.SMALLEST_MAGN
    ncv_fac: int = 3
    tol: float = 1e-6
    max_iter: int = 1000
    power_tol: float = 1e-5
    power_max_iter: int = 100
    power_strict: bool = False
    verbose: bool = False

    def __post_init__(self) -> None:
        set_ = object.__setattr__
        set_(self, "solver", _as_enum(SpectraMode, self.solver, "Solver"))
        set_(self, "selection_rule", _as_enum(SelectionRule, self.selection_rule, "selectionRule"))
        set_(self, "sort_rule", _as_enum(SelectionRule, self.sort_rule, "sortRule"))
        # 実対称問題では虚部による選択は意味を持たない
        for name in ("selection_rule", "sort_rule"):
            rule = getattr(self, name)
            if rule in (SelectionRule.LARGEST_IMAG, SelectionRule.SMALLEST_IMAG):
                raise ConfigError(f"{name} に虚部規則は指定できません（実対称問題）: {rule.name}")
        if self.ncv_fac < 1:
            raise ConfigError(f"ncvFac は1以上: {self.ncv_fac}")
        if not self.tol > 0:
            raise ConfigError(f"Tol は正値: {self.tol}")
        if self.max_iter < 1:
            raise ConfigError(f"MaxIter は1以上: {self.max_iter}")
        if not self.power_tol > 0:
            raise ConfigError(f"PowerTol は正値: {self.power_tol}")
        if self.power_max_iter < 1:
            raise ConfigError(f"PowerMaxIter は1以上: {self.power_max_iter}")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> EigenConfig:
        """フラットなオプション辞書から生成する."""
        return cls(**_apply_option_table(cls, _EIGEN_OPTIONS, options))

    def with_options(self, options: Mapping[str, Any]) -> EigenConfig:
        """オプションを上書きした新しい設定を返す."""
        return replace(self, **_apply_option_table(type(self), _EIGEN_OPTIONS, options))

    def to_options(self) -> dict[str, Any]:
        """オプション名をキーとする辞書に変換する."""
        return {key: getattr(self, name) for key, name in _EIGEN_OPTIONS.items()}


__all__ = [
    "LinearSolverType",
    "BifurcationMethod",
    "ArcLengthMethod",
    "AngleMethod",
    "PredictorType",
    "SpectraMode",
    "SelectionRule",
    "ArcLengthConfig",
    "EigenConfig",
]
