"""再開用チェックポイントのテスト."""

from __future__ import annotations

import json

import numpy as np
import pytest
import scipy.sparse as sp

from shellstab.arc_length import ArcLengthIterator
from shellstab.config import ArcLengthConfig
from shellstab.core.state import SolutionState
from shellstab.output import load_checkpoint, save_checkpoint


def _spring_jacobian(u):
    return sp.csr_matrix([[1.0 - 0.03 * u[0] ** 2]])


def _spring_residual(u, lam, force):
    return np.array([u[0] - 0.01 * u[0] ** 3]) - lam * force


def _iterator(**options) -> ArcLengthIterator:
    cfg = ArcLengthConfig.from_options({"Length": 0.5, **options})
    it = ArcLengthIterator(_spring_jacobian, _spring_residual, np.array([1.0]), cfg)
    it.initialize()
    return it


class TestSolutionState:
    def test_zeros(self):
        state = SolutionState.zeros(3)
        assert state.ndof == 3
        np.testing.assert_array_equal(state.delta_u, np.zeros(3))

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            SolutionState(u=np.zeros(3), delta_u=np.zeros(2))

    def test_copy_is_deep(self):
        state = SolutionState(u=np.ones(2), lam=0.5)
        dup = state.copy()
        dup.u[0] = 9.0
        assert state.u[0] == 1.0


class TestCheckpoint:
    def test_round_trip(self, tmp_path):
        state = SolutionState(
            u=np.array([0.1, 1.0 / 3.0, -2.5e-7]),
            lam=0.7071067811865476,
            delta_u=np.array([1e-3, 2e-3, 3e-3]),
            delta_lam=0.1,
            step_index=12,
            length=0.25,
        )
        path = save_checkpoint(tmp_path / "ckpt" / "state.json", state)
        loaded = load_checkpoint(path)

        np.testing.assert_array_equal(loaded.u, state.u)
        np.testing.assert_array_equal(loaded.delta_u, state.delta_u)
        assert loaded.lam == state.lam
        assert loaded.delta_lam == state.delta_lam
        assert loaded.step_index == 12
        assert loaded.length == 0.25

    def test_round_trip_without_length(self, tmp_path):
        path = save_checkpoint(tmp_path / "state.json", SolutionState.zeros(2))
        assert load_checkpoint(path).length is None

    @pytest.mark.parametrize("adaptive", [False, True])
    def test_restart_matches_uninterrupted_run(self, tmp_path, adaptive):
        """チェックポイントから再開した経路は中断なしの経路と一致する."""
        options = {"AdaptiveLength": adaptive, "AdaptiveIterations": 4}
        it = _iterator(**options)
        for _ in range(3):
            it.step()
        path = save_checkpoint(tmp_path / "state.json", it.solution_state())
        for _ in range(2):
            it.step()

        state = load_checkpoint(path)
        assert state.step_index == 3
        restarted = _iterator(**options)
        restarted.restore(state)
        assert restarted.length == state.length
        for _ in range(2):
            restarted.step()

        np.testing.assert_array_equal(restarted.solution_u, it.solution_u)
        assert restarted.solution_l == it.solution_l
        np.testing.assert_array_equal(restarted.solution_du, it.solution_du)
        assert restarted.length == it.length
        assert restarted.solution_state().step_index == it.solution_state().step_index == 5

    def test_version_mismatch(self, tmp_path):
        path = save_checkpoint(tmp_path / "state.json", SolutionState.zeros(2))
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        data["version"] = 99
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        with pytest.raises(ValueError, match="version"):
            load_checkpoint(path)

    def test_ndof_mismatch(self, tmp_path):
        path = save_checkpoint(tmp_path / "state.json", SolutionState.zeros(2))
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        data["ndof"] = 3
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        with pytest.raises(ValueError):
            load_checkpoint(path)
