"""経路追跡結果の出力.

主要関数:
    save_checkpoint / load_checkpoint: 再開用チェックポイント（JSON）
    export_path_csv: 荷重-変位経路を CSV にエクスポート
    plot_load_path: 荷重-変位曲線を PNG に描画
"""

from shellstab.output.checkpoint import load_checkpoint, save_checkpoint
from shellstab.output.export_csv import export_path_csv
from shellstab.output.plot import plot_load_path

__all__ = [
    "save_checkpoint",
    "load_checkpoint",
    "export_path_csv",
    "plot_load_path",
]
