"""経路追跡ドライバ trace_path のテスト."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from shellstab.config import ArcLengthConfig, ArcLengthMethod
from shellstab.continuation import ArcLengthResult, trace_path
from shellstab.timing import AssemblyTimer


def _spring_jacobian(u):
    return sp.csr_matrix([[1.0 - 0.03 * u[0] ** 2]])


def _spring_residual(u, lam, force):
    return np.array([u[0] - 0.01 * u[0] ** 3]) - lam * force


def _hardening_jacobian(u):
    return sp.csr_matrix([[1.0 + 3.0 * u[0] ** 2]])


def _hardening_residual(u, lam, force):
    return np.array([u[0] + u[0] ** 3]) - lam * force


def _pitchfork_jacobian(u):
    u1, u2 = u
    return sp.csr_matrix([[1.0, -u2], [-u2, 1.0 - u1 + 3.0 * u2**2]])


def _pitchfork_residual(u, lam, force):
    u1, u2 = u
    return np.array([u1 - 0.5 * u2**2, (1.0 - u1) * u2 + u2**3]) - lam * force


class TestArcLengthResult:
    """ArcLengthResult データクラスのテスト."""

    def test_creation(self):
        result = ArcLengthResult(
            u=np.zeros(4),
            lam=1.0,
            converged=True,
            n_steps=10,
            total_iterations=25,
        )
        assert result.converged
        assert result.lam == 1.0
        assert result.load_history == []
        assert result.singular_points == []
        assert result.assembly_time == 0.0


class TestTracePath:
    def test_snap_through(self):
        result = trace_path(
            _spring_jacobian,
            _spring_residual,
            np.array([1.0]),
            ArcLengthConfig(length=0.5),
            n_steps=16,
            show_progress=False,
        )
        assert result.converged
        assert result.n_steps == 16
        assert len(result.displacement_history) == 16
        assert max(result.load_history) == pytest.approx(3.849, abs=0.02)
        assert result.u[0] == pytest.approx(8.0)
        assert result.total_iterations >= 16

    def test_lambda_max(self):
        K = sp.csr_matrix([[2.0, -1.0], [-1.0, 2.0]])
        result = trace_path(
            lambda u: K,
            lambda u, lam, f: K @ u - lam * f,
            np.ones(2),
            ArcLengthConfig(method=ArcLengthMethod.LOAD_CONTROL, length=0.1),
            n_steps=50,
            lambda_max=0.35,
            show_progress=False,
        )
        assert result.converged
        assert result.n_steps == 4
        assert result.lam == pytest.approx(0.4)

    def test_cutback(self):
        """反復上限で失敗したステップは弧長を半減して再試行される."""
        result = trace_path(
            _hardening_jacobian,
            _hardening_residual,
            np.array([1.0]),
            ArcLengthConfig(method=ArcLengthMethod.LOAD_CONTROL, length=1.0, max_iter=3),
            n_steps=50,
            lambda_max=1.0,
            show_progress=False,
        )
        assert result.converged
        assert result.load_history[0] == pytest.approx(0.25)
        assert result.lam >= 1.0
        u = result.u[0]
        assert u + u**3 == pytest.approx(result.lam, rel=1e-6)

    def test_cutbacks_exhausted(self):
        result = trace_path(
            _hardening_jacobian,
            _hardening_residual,
            np.array([1.0]),
            ArcLengthConfig(method=ArcLengthMethod.LOAD_CONTROL, length=1.0, max_iter=1),
            n_steps=5,
            max_cutbacks=1,
            show_progress=False,
        )
        assert not result.converged
        assert result.n_steps == 0
        assert result.lam == 0.0

    def test_limit_point_located(self):
        result = trace_path(
            _spring_jacobian,
            _spring_residual,
            np.array([1.0]),
            ArcLengthConfig(length=0.5),
            n_steps=16,
            detect_stability=True,
            locate_singular=True,
            show_progress=False,
        )
        assert result.converged
        assert len(result.singular_points) == 1
        point = result.singular_points[0]
        assert point.point_type == "limit"
        assert point.u[0] == pytest.approx(1.0 / np.sqrt(0.03), abs=1e-3)
        # 特異点探索の後も符号変化点から追跡を続ける
        assert result.n_steps == 16
        assert result.u[0] == pytest.approx(8.0)
        assert len(result.indicator_history) == 16

    def test_branch_switch(self):
        result = trace_path(
            _pitchfork_jacobian,
            _pitchfork_residual,
            np.array([1.0, 0.0]),
            ArcLengthConfig(length=0.3),
            n_steps=6,
            detect_stability=True,
            locate_singular=True,
            branch_switch=True,
            show_progress=False,
        )
        assert result.converged
        assert len(result.singular_points) == 1
        point = result.singular_points[0]
        assert point.point_type == "bifurcation"
        assert point.lam == pytest.approx(1.0, abs=2e-4)

        # 分岐点以降は分岐経路上（λ > 1, u2 ≠ 0）
        assert abs(result.u[1]) > 0.05
        assert result.lam > 1.0
        assert all(lam > 1.0 - 2e-4 for lam in result.load_history[3:])

    def test_lambda_max_at_branch_switch(self):
        """分岐切替したステップでも lambda_max で終了する."""
        result = trace_path(
            _pitchfork_jacobian,
            _pitchfork_residual,
            np.array([1.0, 0.0]),
            ArcLengthConfig(length=0.3),
            n_steps=6,
            lambda_max=0.99,
            detect_stability=True,
            locate_singular=True,
            branch_switch=True,
            show_progress=False,
        )
        assert result.converged
        assert len(result.singular_points) == 1
        assert result.n_steps == 4
        assert result.load_history[-1] == pytest.approx(1.0, abs=2e-4)
        assert result.lam == pytest.approx(1.0, abs=2e-4)

    def test_timer(self):
        timer = AssemblyTimer()
        result = trace_path(
            _spring_jacobian,
            _spring_residual,
            np.array([1.0]),
            ArcLengthConfig(length=0.5),
            n_steps=3,
            show_progress=False,
            timer=timer,
        )
        assert timer.calls["jacobian"] > 0
        assert timer.calls["residual"] > 0
        assert result.assembly_time == pytest.approx(timer.total)
