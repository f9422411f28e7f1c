"""疎線形代数ユーティリティのテスト."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from shellstab.config import LinearSolverType
from shellstab.errors import ConvergenceError
from shellstab.linalg import TangentFactorization, apply_bc, pivot_signature, solve_linear


def _make_tridiag(n: int) -> sp.csr_matrix:
    """n×n の三重対角行列（バネ系）を生成."""
    diag_main = 2.0 * np.ones(n)
    diag_off = -1.0 * np.ones(n - 1)
    return sp.diags([diag_off, diag_main, diag_off], [-1, 0, 1], format="csr")


class TestSolveLinear:
    def test_small_uses_spsolve(self):
        K = _make_tridiag(5)
        f = np.arange(1.0, 6.0)
        result = solve_linear(K, f)
        assert result.info["method"] == "spsolve"
        np.testing.assert_allclose(result.u, np.linalg.solve(K.toarray(), f))

    def test_pyamg_path(self):
        """規模閾値を下げて pyamg 経路を通す."""
        n = 50
        K = _make_tridiag(n)
        f = np.ones(n)
        result = solve_linear(K, f, rtol=1e-10, maxiter=1000, size_threshold=10)
        assert result.info["method"] == "pyamg-V"
        np.testing.assert_allclose(result.u, np.linalg.solve(K.toarray(), f), rtol=1e-5)

    def test_disable_pyamg(self):
        n = 50
        K = _make_tridiag(n)
        result = solve_linear(K, np.ones(n), size_threshold=10, use_pyamg=False)
        assert result.info["method"] == "spsolve"


class TestApplyBC:
    def test_row_column_elimination(self):
        K = _make_tridiag(3)
        r = np.array([1.0, 2.0, 3.0])
        K_bc, r_bc = apply_bc(K, r, np.array([0]))
        expected = np.array(
            [
                [1.0, 0.0, 0.0],
                [0.0, 2.0, -1.0],
                [0.0, -1.0, 2.0],
            ]
        )
        np.testing.assert_allclose(K_bc.toarray(), expected)
        np.testing.assert_allclose(r_bc, [0.0, 2.0, 3.0])
        # 入力は変更されない
        assert r[0] == 1.0
        assert K[0, 0] == 2.0

    def test_no_fixed_dofs(self):
        K = _make_tridiag(3)
        K_bc, r_bc = apply_bc(K, np.ones(3), np.array([], dtype=int))
        np.testing.assert_allclose(K_bc.toarray(), K.toarray())


class TestTangentFactorization:
    @pytest.mark.parametrize("solver", [LinearSolverType.DIRECT, LinearSolverType.CG_AMG])
    def test_solve(self, solver):
        n = 30
        K = _make_tridiag(n)
        fact = TangentFactorization(K, solver)
        assert fact.shape == (n, n)
        for rhs in (np.ones(n), np.linspace(-1.0, 1.0, n)):
            np.testing.assert_allclose(
                fact.solve(rhs), np.linalg.solve(K.toarray(), rhs), rtol=1e-6, atol=1e-8
            )

    def test_cg_not_converged(self):
        n = 30
        K = _make_tridiag(n)
        fact = TangentFactorization(K, LinearSolverType.CG_AMG, rtol=1e-14, maxiter=1)
        with pytest.raises(ConvergenceError) as excinfo:
            fact.solve(np.linspace(-1.0, 1.0, n))
        assert excinfo.value.reason == "linear_solver"


class TestPivotSignature:
    def test_diagonal(self):
        sig = pivot_signature(sp.diags([2.0, -3.0, 4.0], format="csr"))
        assert sig.sign == -1.0
        assert sig.min_abs_pivot == pytest.approx(2.0)
        assert sig.n_negative == 1

    def test_sign_matches_determinant(self):
        rng = np.random.default_rng(0)
        M = rng.standard_normal((6, 6))
        A = M + M.T
        sig = pivot_signature(sp.csr_matrix(A))
        assert sig.sign == np.sign(np.linalg.det(A))

    def test_exactly_singular(self):
        sig = pivot_signature(sp.csr_matrix([[1.0, 1.0], [1.0, 1.0]]))
        assert sig.sign == 0.0
        assert sig.min_abs_pivot == 0.0
