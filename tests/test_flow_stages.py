"""Tests for flow model stages.

Tests: MetCalcsRunner, TurbineCalcsRunner, MapGenerationRunner

Scenario: a 200 m hill on the site with a windier met on the summit (M1)
and a calmer met 3 km east on the hillside (M2).
"""

import numpy as np
import pytest

from conftest import SITE_X, SITE_Y, CancelAfter, hill_grid, make_wind
from windresource.constants import MapConfig
from windresource.model.requests import MapGenerationParams, MetCalcsParams, TurbineCalcsParams, WorkRequest
from windresource.model.results import Cancelled, Completed, Failed
from windresource.model.snapshot import DomainSnapshot
from windresource.model.turbine import PowerCurve
from windresource.model.wind_map import MapType
from windresource.stages import MapGenerationRunner, MetCalcsRunner, TurbineCalcsRunner

RADII = (2000, 4000)


def run_met_calcs(snapshot: DomainSnapshot, make_ctx, model_set: str = "all"):
    ctx, recorder = make_ctx(snapshot)
    params = MetCalcsParams(model_set=model_set, radii_m=RADII)
    return MetCalcsRunner().invoke(WorkRequest(snapshot, params), ctx), recorder


@pytest.fixture
def hill_project(snapshot: DomainSnapshot, power_curve_100m: PowerCurve) -> DomainSnapshot:
    snapshot.topography = hill_grid()
    snapshot.add_met(easting=SITE_X, northing=SITE_Y, wind=make_wind(a=9.0))
    snapshot.add_met(easting=SITE_X + 3000, northing=SITE_Y, wind=make_wind(a=7.5))
    snapshot.add_power_curve(power_curve_100m)
    return snapshot


@pytest.fixture
def calibrated(hill_project: DomainSnapshot, make_ctx) -> DomainSnapshot:
    result, _ = run_met_calcs(hill_project, make_ctx)
    assert isinstance(result, Completed)
    return hill_project


# =============================================================================
# MET CALCS
# =============================================================================


class TestMetCalcs:
    """MetCalcsRunner - exposures, pairs and site-calibrated models."""

    def test_builds_exposures_pairs_and_model(self, hill_project, make_ctx) -> None:
        result, recorder = run_met_calcs(hill_project, make_ctx)

        assert isinstance(result, Completed)
        summit, hillside = hill_project.mets["M1"], hill_project.mets["M2"]
        assert set(summit.exposures) == set(RADII)
        assert np.all(summit.exposures[4000].upwind > 0)
        assert [(p.met_a, p.met_b, p.distance_m) for p in hill_project.met_pairs] == [("M1", "M2", 3000.0)]

        model = hill_project.site_model()
        assert not model.is_default
        assert model.radius_m in RADII
        assert model.uw_coeffs.mean() > 0
        assert recorder.messages[0] == "Calculating exposures..."
        assert "Finding site-calibrated models..." in recorder.messages

    def test_single_met_gets_default_model(self, hill_project, make_ctx) -> None:
        del hill_project.mets["M2"]
        result, _ = run_met_calcs(hill_project, make_ctx)

        assert isinstance(result, Completed)
        assert hill_project.site_model().is_default
        assert "1 default models" in result.mutations
        assert hill_project.met_pairs == []

    def test_model_set_builds_every_combination(self, hill_project, make_ctx) -> None:
        result, _ = run_met_calcs(hill_project, make_ctx, model_set="day_night")
        assert isinstance(result, Completed)
        assert set(hill_project.site_models) == {("All", "All"), ("Day", "All"), ("Night", "All")}

    @pytest.mark.parametrize(
        "prepare,message",
        [
            (lambda s: setattr(s, "topography", None), "topography"),
            (lambda s: [setattr(m, "wind", None) for m in s.mets.values()], "wind distribution"),
        ],
    )
    def test_missing_inputs(self, hill_project, make_ctx, prepare, message: str) -> None:
        prepare(hill_project)
        result, _ = run_met_calcs(hill_project, make_ctx)
        assert isinstance(result, Failed)
        assert message in result.message

    def test_unknown_model_set(self, hill_project, make_ctx) -> None:
        result, _ = run_met_calcs(hill_project, make_ctx, model_set="hourly")
        assert isinstance(result, Failed)
        assert result.error_type == "ValidationError"

    def test_cancel_restores_previous_state(self, hill_project, make_ctx) -> None:
        ctx, _ = make_ctx(hill_project)
        ctx.reporter.add_listener(CancelAfter(ctx.cancellation, n=2))

        result = MetCalcsRunner().invoke(WorkRequest(hill_project, MetCalcsParams(radii_m=RADII)), ctx)

        assert isinstance(result, Cancelled)
        assert all(m.exposures == {} for m in hill_project.mets.values())
        assert hill_project.site_models == {}
        assert hill_project.met_pairs == []


# =============================================================================
# TURBINE CALCS
# =============================================================================


class TestTurbineCalcs:
    """TurbineCalcsRunner - free-stream estimates, gross AEP and wakes."""

    @pytest.fixture
    def turbines(self, calibrated: DomainSnapshot) -> DomainSnapshot:
        calibrated.add_turbine(easting=SITE_X + 1000, northing=SITE_Y, power_curve="G100-3.0")
        calibrated.add_turbine(easting=SITE_X + 1000, northing=SITE_Y + 500, power_curve="G100-3.0")
        return calibrated

    def test_free_stream_estimates(self, turbines, make_ctx) -> None:
        ctx, _ = make_ctx(turbines)
        result = TurbineCalcsRunner().invoke(WorkRequest(turbines, TurbineCalcsParams()), ctx)

        assert isinstance(result, Completed)
        for turbine in turbines.turbines.values():
            assert turbine.has_estimates
            assert turbine.gross_aep_mwh > 0
            assert turbine.net_estimates == {}
        # Estimates lie between the hillside and summit mets
        low, high = turbines.mets["M2"].wind.mean_ws, turbines.mets["M1"].wind.mean_ws
        assert 0.8 * low < turbines.turbines["T1"].ws_estimate < 1.2 * high

    def test_wake_model_reduces_energy(self, turbines, make_ctx) -> None:
        ctx, _ = make_ctx(turbines)
        params = TurbineCalcsParams(wake_power_curve="G100-3.0", wake_decay=0.075)

        result = TurbineCalcsRunner().invoke(WorkRequest(turbines, params), ctx)

        assert isinstance(result, Completed)
        assert list(turbines.wake_models) == ["WM1"]
        for turbine in turbines.turbines.values():
            net = turbine.net_estimates["WM1"]
            assert net.aep_mwh < turbine.gross_aep_mwh
            assert 0 < net.wake_loss < 0.2

    def test_unknown_wake_power_curve(self, turbines, make_ctx) -> None:
        ctx, _ = make_ctx(turbines)
        params = TurbineCalcsParams(wake_power_curve="nope")
        result = TurbineCalcsRunner().invoke(WorkRequest(turbines, params), ctx)
        assert isinstance(result, Failed)
        assert turbines.wake_models == {}

    def test_needs_site_model(self, hill_project, make_ctx) -> None:
        hill_project.add_turbine(easting=SITE_X, northing=SITE_Y)
        ctx, _ = make_ctx(hill_project)
        result = TurbineCalcsRunner().invoke(WorkRequest(hill_project, TurbineCalcsParams()), ctx)
        assert isinstance(result, Failed)
        assert "met calcs" in result.message

    def test_cancel_discards_estimates_and_wake_model(self, turbines, make_ctx) -> None:
        ctx, _ = make_ctx(turbines)
        # 3 free-stream events, then the first wake event cancels
        ctx.reporter.add_listener(CancelAfter(ctx.cancellation, n=4))
        params = TurbineCalcsParams(wake_power_curve="G100-3.0")

        result = TurbineCalcsRunner().invoke(WorkRequest(turbines, params), ctx)

        assert isinstance(result, Cancelled)
        assert turbines.wake_models == {}
        assert not any(t.has_estimates for t in turbines.turbines.values())


# =============================================================================
# MAP GENERATION
# =============================================================================


class TestMapGeneration:
    """MapGenerationRunner - node values, resume and completion flag."""

    def add_ws_map(self, snapshot: DomainSnapshot, **kwargs):
        return snapshot.add_map(
            map_type=kwargs.pop("map_type", MapType.WS),
            min_x=SITE_X - 200,
            min_y=SITE_Y - 200,
            resolution=200.0,
            num_x=3,
            num_y=3,
            **kwargs,
        )

    def test_ws_map(self, calibrated, store, make_ctx) -> None:
        wind_map = self.add_ws_map(calibrated)
        ctx, _ = make_ctx(calibrated, store)

        result = MapGenerationRunner().invoke(WorkRequest(calibrated, MapGenerationParams(map_name="MAP1")), ctx)

        assert isinstance(result, Completed)
        assert wind_map.is_complete
        assert np.all(wind_map.parameter_to_map > 0)
        values = wind_map.parameter_to_map
        # Along each north-south line the node level with the summit is the windiest
        assert np.all(values[:, 1] == values.max(axis=1))
        assert values[1, 1] > max(values[1, 0], values[1, 2])
        assert wind_map.elevations[1, 1] == pytest.approx(500.0)
        assert store.count_rows("nodes") == 9

    def test_resume_skips_done_nodes(self, calibrated, make_ctx) -> None:
        wind_map = self.add_ws_map(calibrated)
        wind_map.parameter_to_map[0, 0] = 99.0
        ctx, _ = make_ctx(calibrated)

        result = MapGenerationRunner().invoke(WorkRequest(calibrated, MapGenerationParams(map_name="MAP1")), ctx)

        assert result.mutations == ("map MAP1: 8 nodes computed, 1 resumed",)
        assert wind_map.parameter_to_map[0, 0] == 99.0

    def test_cancelled_map_resumes(self, calibrated, make_ctx, monkeypatch) -> None:
        monkeypatch.setattr(MapConfig, "NODE_PROGRESS_INTERVAL", 1)
        wind_map = self.add_ws_map(calibrated)
        ctx, _ = make_ctx(calibrated)
        # Start event plus three nodes
        ctx.reporter.add_listener(CancelAfter(ctx.cancellation, n=4))

        first = MapGenerationRunner().invoke(WorkRequest(calibrated, MapGenerationParams(map_name="MAP1")), ctx)

        assert isinstance(first, Cancelled)
        assert not wind_map.is_complete
        assert np.count_nonzero(wind_map.parameter_to_map) == 3

        ctx, _ = make_ctx(calibrated)
        second = MapGenerationRunner().invoke(WorkRequest(calibrated, MapGenerationParams(map_name="MAP1")), ctx)
        assert second.mutations == ("map MAP1: 6 nodes computed, 3 resumed",)
        assert wind_map.is_complete

    def test_zero_values_count_as_done(self, snapshot, make_ctx) -> None:
        grid = hill_grid()
        grid.values[:] = 300.0
        snapshot.topography = grid
        wind_map = self.add_ws_map(snapshot, map_type=MapType.UW_EXPOSURE, radius_m=2000)
        ctx, _ = make_ctx(snapshot)

        result = MapGenerationRunner().invoke(WorkRequest(snapshot, MapGenerationParams(map_name="MAP1")), ctx)

        assert isinstance(result, Completed)
        np.testing.assert_allclose(wind_map.parameter_to_map, 0.0, atol=1e-6)
        assert all(wind_map.is_node_done(ix, iy) for ix in range(3) for iy in range(3))

    @pytest.mark.parametrize(
        "map_kwargs,message",
        [
            ({"map_type": MapType.UW_EXPOSURE}, "radius"),
            ({"map_type": MapType.AEP, "power_curve": "missing"}, "power curve"),
            ({"wake_model_id": "WM9"}, "wake model"),
        ],
    )
    def test_invalid_maps(self, calibrated, make_ctx, map_kwargs: dict, message: str) -> None:
        self.add_ws_map(calibrated, **map_kwargs)
        ctx, _ = make_ctx(calibrated)
        result = MapGenerationRunner().invoke(WorkRequest(calibrated, MapGenerationParams(map_name="MAP1")), ctx)
        assert isinstance(result, Failed)
        assert message in result.message

    def test_unknown_map(self, calibrated, make_ctx) -> None:
        ctx, _ = make_ctx(calibrated)
        result = MapGenerationRunner().invoke(WorkRequest(calibrated, MapGenerationParams(map_name="MAP7")), ctx)
        assert isinstance(result, Failed)

    def test_aep_map_with_wake(self, calibrated, make_ctx) -> None:
        calibrated.add_turbine(easting=SITE_X, northing=SITE_Y + 400, power_curve="G100-3.0")
        wake_model = calibrated.add_wake_model(power_curve="G100-3.0")
        free = self.add_ws_map(calibrated, map_type=MapType.AEP, power_curve="G100-3.0")
        waked = self.add_ws_map(calibrated, map_type=MapType.AEP, power_curve="G100-3.0", wake_model_id=wake_model.id)

        for wind_map in (free, waked):
            ctx, _ = make_ctx(calibrated)
            params = MapGenerationParams(map_name=wind_map.name)
            assert isinstance(MapGenerationRunner().invoke(WorkRequest(calibrated, params), ctx), Completed)

        # Nodes south of the turbine lose energy to its wake
        assert waked.parameter_to_map[1, 0] < free.parameter_to_map[1, 0]
        np.testing.assert_allclose(free.sector_param_to_map.sum(axis=2), free.parameter_to_map, rtol=1e-6)
