"""一般化固有値ソルバーのテスト.

テスト方針:
  1. 1自由度の座屈問題（解析解 μ = 1）
  2. 密行列解法と疎行列解法（5種のスペクトル変換）の一致・残差
  3. compute_sparse_descending の降順契約
  4. べき乗法（対角行列で解析解あり）と非収束時の扱い（ARPACK 含む）
  5. initialize_matrix による K_NL の構築
  6. 不正な設定の検出
"""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from shellstab.config import EigenConfig, SelectionRule, SpectraMode
from shellstab.core.results import EigenMode
from shellstab.eigen import BucklingSolver, ModalSolver, smallest_eigenpair
from shellstab.errors import ConfigError, ConvergenceError


def _make_tridiag(n: int) -> sp.csr_matrix:
    """n×n の三重対角行列（バネ系）を生成."""
    diag_main = 2.0 * np.ones(n)
    diag_off = -1.0 * np.ones(n - 1)
    return sp.diags([diag_off, diag_main, diag_off], [-1, 0, 1], format="csr")


def _make_mass(n: int) -> sp.csr_matrix:
    return sp.diags(np.arange(1, n + 1) / n, format="csr")


class TestBucklingDense:
    """密行列解法のテスト."""

    def test_single_dof(self):
        """K_L=[[1]], K_NL=[[2]] → μ = 1."""
        solver = BucklingSolver(sp.csr_matrix([[1.0]]), sp.csr_matrix([[2.0]]))
        solver.compute()
        np.testing.assert_allclose(solver.values, [1.0])
        assert solver.vectors.shape == (1, 1)

    def test_single_dof_with_shift(self):
        """シフト付きでも固有値は元の値で報告される."""
        solver = BucklingSolver(sp.csr_matrix([[1.0]]), sp.csr_matrix([[2.0]]))
        solver.compute(shift=0.5)
        np.testing.assert_allclose(solver.values, [1.0])

    def test_ascending_order(self):
        K_L = sp.diags([3.0, 1.0, 2.0], format="csr")
        K_NL = K_L + sp.identity(3, format="csr")
        solver = BucklingSolver(K_L, K_NL)
        solver.compute()
        np.testing.assert_allclose(solver.values, [1.0, 2.0, 3.0])

    def test_mode_accessor(self):
        K_L = sp.diags([3.0, 1.0, 2.0], format="csr")
        solver = BucklingSolver(K_L, K_L + sp.identity(3, format="csr"))
        solver.compute()
        mode = solver.mode(0)
        assert isinstance(mode, EigenMode)
        assert mode.value == pytest.approx(1.0)
        assert abs(mode.vector[1]) == pytest.approx(1.0)
        np.testing.assert_array_equal(solver.vector(2), solver.vectors[:, 2])
        assert solver.value(2) == pytest.approx(3.0)

    def test_missing_nonlinear_matrix(self):
        solver = BucklingSolver(sp.identity(3, format="csr"))
        with pytest.raises(ConfigError):
            solver.compute()

    def test_indefinite_b_falls_back(self):
        """B が不定値でも有限の実固有値を昇順で返す."""
        A = sp.diags([2.0, 3.0], format="csr")
        B = sp.diags([1.0, -1.0], format="csr")
        solver = ModalSolver(A, B)
        solver.compute()
        np.testing.assert_allclose(solver.values, [-3.0, 2.0])


class TestSparseModes:
    """疎行列解法と密行列解法の一致."""

    N = 10
    NUMBER = 3

    @pytest.mark.parametrize(
        ("mode", "shift"),
        [
            (SpectraMode.CHOLESKY, 0.0),
            (SpectraMode.REGULAR_INVERSE, 0.0),
            (SpectraMode.SHIFT_INVERT, 0.0),
            (SpectraMode.BUCKLING, 0.01),
            (SpectraMode.CAYLEY, 0.01),
        ],
    )
    def test_matches_dense(self, mode, shift):
        K = _make_tridiag(self.N)
        M = _make_mass(self.N)

        dense = ModalSolver(K, M)
        dense.compute()

        cfg = EigenConfig(
            solver=mode,
            selection_rule=SelectionRule.SMALLEST_ALGE,
            sort_rule=SelectionRule.SMALLEST_ALGE,
        )
        sparse = ModalSolver(K, M, config=cfg)
        sparse.compute_sparse(shift=shift, number=self.NUMBER)

        assert sparse.values.shape == (self.NUMBER,)
        assert sparse.vectors.shape == (self.N, self.NUMBER)
        np.testing.assert_allclose(sparse.values, dense.values[: self.NUMBER], rtol=1e-5)

    def test_cholesky_residual(self):
        """(A - μB)v ≈ 0."""
        K = _make_tridiag(self.N)
        M = _make_mass(self.N)
        cfg = EigenConfig(
            solver=SpectraMode.CHOLESKY,
            selection_rule=SelectionRule.SMALLEST_ALGE,
            sort_rule=SelectionRule.SMALLEST_ALGE,
        )
        solver = ModalSolver(K, M, config=cfg)
        solver.compute_sparse(number=self.NUMBER)
        for k in range(self.NUMBER):
            v = solver.vector(k)
            r = K @ v - solver.value(k) * (M @ v)
            assert np.linalg.norm(r) < 1e-4 * np.linalg.norm(v)

    def test_sort_rule_largest_magnitude(self):
        K = _make_tridiag(self.N)
        M = _make_mass(self.N)
        cfg = EigenConfig(
            solver=SpectraMode.REGULAR_INVERSE,
            selection_rule=SelectionRule.SMALLEST_ALGE,
            sort_rule=SelectionRule.LARGEST_MAGN,
        )
        solver = ModalSolver(K, M, config=cfg)
        solver.compute_sparse(number=self.NUMBER)
        assert np.all(np.diff(np.abs(solver.values)) <= 0.0)

    def test_cholesky_requires_positive_definite_b(self):
        K = _make_tridiag(4)
        B = sp.diags([1.0, -1.0, 2.0, 3.0], format="csr")
        solver = ModalSolver(K, B, config=EigenConfig(solver=SpectraMode.CHOLESKY))
        with pytest.raises(ConfigError):
            solver.compute_sparse(number=2)

    @pytest.mark.parametrize("mode", [SpectraMode.BUCKLING, SpectraMode.CAYLEY])
    def test_zero_shift_rejected(self, mode):
        solver = ModalSolver(_make_tridiag(6), config=EigenConfig(solver=mode))
        with pytest.raises(ConfigError):
            solver.compute_sparse(shift=0.0, number=2)

    def test_number_out_of_range(self):
        solver = ModalSolver(_make_tridiag(4))
        with pytest.raises(ConfigError):
            solver.compute_sparse(number=4)


class TestDescending:
    """compute_sparse_descending の降順契約."""

    def test_reversed_order(self):
        K_L = sp.diags([2.0, 3.0, 4.0, 5.0, 6.0, 7.0], format="csr")
        K_NL = K_L + sp.identity(6, format="csr")
        solver = BucklingSolver(K_L, K_NL)
        solver.compute_sparse_descending(3)

        np.testing.assert_allclose(solver.values, [4.0, 3.0, 2.0], rtol=1e-8)
        assert np.all(np.diff(solver.values) < 0.0)
        # 列も同じ順序で反転している
        assert abs(solver.vectors[2, 0]) == pytest.approx(1.0, abs=1e-6)
        assert abs(solver.vectors[0, 2]) == pytest.approx(1.0, abs=1e-6)


class TestPowerIteration:
    """べき乗法のテスト."""

    def test_diagonal_operator(self):
        """D = diag(4, 2, 1) → μ = 1/4, v = ±e1."""
        K_L = sp.identity(3, format="csr")
        K_NL = K_L + sp.diags([4.0, 2.0, 1.0], format="csr")
        solver = BucklingSolver(K_L, K_NL)
        solver.compute_power()

        assert solver.power_converged
        np.testing.assert_allclose(solver.values, [0.25], rtol=1e-6)
        assert abs(solver.vector(0)[0]) == pytest.approx(1.0, abs=1e-4)

    def test_not_converged_keeps_last_iterate(self):
        """支配固有値が負 → 符号が反転し続け収束しない."""
        K_L = sp.identity(3, format="csr")
        K_NL = K_L + sp.diags([-4.0, 1.0, 1.0], format="csr")
        solver = BucklingSolver(K_L, K_NL, config=EigenConfig(power_max_iter=10))
        solver.compute_power()

        assert solver.power_converged is False
        assert solver.power_iterations == 10
        assert solver.values.shape == (1,)

    def test_strict_mode_raises(self):
        K_L = sp.identity(3, format="csr")
        K_NL = K_L + sp.diags([-4.0, 1.0, 1.0], format="csr")
        cfg = EigenConfig(power_max_iter=10, power_strict=True)
        solver = BucklingSolver(K_L, K_NL, config=cfg)
        with pytest.raises(ConvergenceError) as excinfo:
            solver.compute_power()
        assert excinfo.value.reason == "power"


class TestInitializeMatrix:
    """参照線形解からの K_NL 構築."""

    def test_reference_solution(self):
        K_L = sp.diags([2.0, 2.0, 2.0], format="csr")

        def nonlinear_fun(u):
            return K_L + sp.diags(u, format="csr")

        solver = BucklingSolver(K_L, rhs=np.ones(3), nonlinear_fun=nonlinear_fun, scaling=2.0)
        solver.initialize_matrix()

        np.testing.assert_allclose(solver.reference_solution, np.ones(3))
        solver.compute()
        np.testing.assert_allclose(solver.values, [2.0, 2.0, 2.0])

    def test_requires_rhs_and_operator(self):
        solver = BucklingSolver(sp.identity(2, format="csr"))
        with pytest.raises(ConfigError):
            solver.initialize_matrix()


class TestModalSolver:
    """モード解析と絶対値最小固有対."""

    def test_frequencies(self):
        solver = ModalSolver(sp.diags([4.0, 9.0], format="csr"))
        solver.compute()
        np.testing.assert_allclose(solver.frequencies(), [2.0, 3.0])

    def test_apply_options(self):
        solver = ModalSolver(_make_tridiag(4))
        solver.apply_options({"Solver": 2, "ncvFac": 4})
        assert solver.config.solver == SpectraMode.SHIFT_INVERT
        assert solver.options()["ncvFac"] == 4

    def test_smallest_eigenpair_dense(self):
        K = sp.diags([3.0, -0.5, 2.0], format="csr")
        mode = smallest_eigenpair(K)
        assert mode.value == pytest.approx(-0.5)
        assert abs(mode.vector[1]) == pytest.approx(1.0)

    def test_smallest_eigenpair_sparse(self):
        d = np.linspace(1.0, 5.0, 20)
        d[7] = -0.3
        K = sp.diags(d, format="csr")
        mode = smallest_eigenpair(K, dense_threshold=0)
        assert mode.value == pytest.approx(-0.3, rel=1e-6)
        assert abs(mode.vector[7]) == pytest.approx(1.0, abs=1e-6)


class TestArpackNonConvergence:
    """ARPACK が反復上限内に収束しない場合は ConvergenceError."""

    _STRICT = EigenConfig(max_iter=1, tol=1e-14)

    def test_compute_sparse(self):
        solver = ModalSolver(_make_tridiag(200), config=self._STRICT)
        with pytest.raises(ConvergenceError, match="solver did not converge") as excinfo:
            solver.compute_sparse(number=3)
        assert excinfo.value.reason == "arpack"

    def test_compute_sparse_descending(self):
        K_L = _make_tridiag(200)
        solver = BucklingSolver(K_L, K_L + sp.identity(200, format="csr"), config=self._STRICT)
        with pytest.raises(ConvergenceError, match="solver did not converge") as excinfo:
            solver.compute_sparse_descending(number=3)
        assert excinfo.value.reason == "arpack"
