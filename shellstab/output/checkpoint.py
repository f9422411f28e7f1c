"""再開用チェックポイントの保存・読込.

平衡経路上の1点（u, Δu, λ, Δλ, ステップ番号, 弧長）を JSON で保存する。
float は repr 表現で書き出されるため、読み戻した値はビット単位で一致する。
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np

from shellstab.core.state import SolutionState

_FORMAT_VERSION = 2


class _NumpyEncoder(json.JSONEncoder):
    """NumPy 配列を JSON シリアライズ可能にするエンコーダー."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        return super().default(obj)


def save_checkpoint(path: str | Path, state: SolutionState) -> str:
    """解状態を JSON ファイルに保存する.

    Returns:
        書き出したファイルパス
    """
    filepath = Path(path)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "version": _FORMAT_VERSION,
        "ndof": state.ndof,
        "step_index": state.step_index,
        "lam": state.lam,
        "delta_lam": state.delta_lam,
        "length": state.length,
        "u": state.u,
        "delta_u": state.delta_u,
    }
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(data, fh, cls=_NumpyEncoder, indent=2)
    return str(filepath)


def load_checkpoint(path: str | Path) -> SolutionState:
    """JSON ファイルから解状態を読み込む.

    Raises:
        ValueError: 形式バージョンまたは自由度数が一致しない場合
    """
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if data.get("version") != _FORMAT_VERSION:
        raise ValueError(f"未対応のチェックポイント形式: version={data.get('version')!r}")
    state = SolutionState(
        u=np.asarray(data["u"], dtype=float),
        lam=float(data["lam"]),
        delta_u=np.asarray(data["delta_u"], dtype=float),
        delta_lam=float(data["delta_lam"]),
        step_index=int(data["step_index"]),
        length=None if data["length"] is None else float(data["length"]),
    )
    if state.ndof != int(data["ndof"]):
        raise ValueError(f"自由度数が一致しません: {state.ndof} != {data['ndof']}")
    return state


__all__ = ["save_checkpoint", "load_checkpoint"]
