"""アセンブリ時間の計測.

外部アセンブラのコールバック（接線剛性・残差）をラップし、
呼び出し回数と経過時間を明示的なオブジェクトに集計する。

    timer = AssemblyTimer()
    jac = timer.wrap(jacobian, "jacobian")
    res = timer.wrap(residual, "residual")
    ...
    print(timer.summary())
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from typing import Any


class AssemblyTimer:
    """コールバック単位の経過時間・呼び出し回数の集計."""

    def __init__(self) -> None:
        self.elapsed: dict[str, float] = {}
        self.calls: dict[str, int] = {}

    def wrap(self, fn: Callable[..., Any], name: str | None = None) -> Callable[..., Any]:
        """fn を計測付きでラップした関数を返す."""
        key = name if name is not None else getattr(fn, "__name__", "callback")
        self.elapsed.setdefault(key, 0.0)
        self.calls.setdefault(key, 0)

        @functools.wraps(fn)
        def timed(*args: Any, **kwargs: Any) -> Any:
            t0 = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                self.elapsed[key] += time.perf_counter() - t0
                self.calls[key] += 1

        return timed

    @property
    def total(self) -> float:
        """全コールバックの合計経過時間 [s]."""
        return float(sum(self.elapsed.values()))

    def reset(self) -> None:
        for key in self.elapsed:
            self.elapsed[key] = 0.0
            self.calls[key] = 0

    def summary(self) -> str:
        lines = [f"{'callback':<16s} {'calls':>8s} {'time [s]':>10s}"]
        for key, t in self.elapsed.items():
            lines.append(f"{key:<16s} {self.calls[key]:>8d} {t:>10.4f}")
        lines.append(f"{'total':<16s} {sum(self.calls.values()):>8d} {self.total:>10.4f}")
        return "\n".join(lines)


__all__ = ["AssemblyTimer"]
