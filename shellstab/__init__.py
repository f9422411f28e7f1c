"""shellstab - 薄肉シェルの弧長法経路追跡と座屈固有値解析.

主要モジュール:
    arc_length:   ArcLengthIterator（予測子・修正子反復、安定判定、特異点探索、分岐切替）
    eigen:        BucklingSolver / ModalSolver（密・疎・べき乗法の一般化固有値解法）
    continuation: trace_path（カットバック付きステップループ）
    config:       ArcLengthConfig / EigenConfig
    errors:       ConfigError / ConvergenceError / NonConvergenceError
"""

__version__ = "0.1.0"
