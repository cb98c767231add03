"""End-to-end scenario runs against an offline isochrone provider."""

import sys
import os
import threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from config.settings import AnalysisConfig
from data.result_store import ResultStore
from data.routing_client import StraightLineIsochroneProvider
from engine.accessibility import AccessibilityAnalysis
from engine.errors import InfeasibleRequest, InputDataError, InsufficientBudget, ScenarioCancelled
from models.coverage import band_column
from models.demand import CandidateSite, DemandPoint

KM_PER_DEG = 111.195


def make_point(pid, x_km, pop, county):
    return DemandPoint(pid, 0.0, x_km / KM_PER_DEG, pop, county, county + "01")


def make_site(site_id, x_km, county):
    return CandidateSite(site_id, 0.0, x_km / KM_PER_DEG, county)


def make_country():
    """Two counties 300 km apart: A has 3 towns, B has 2."""
    demand = [
        make_point("a1", 0.0, 900, "A"),
        make_point("a2", 2.0, 300, "A"),
        make_point("a3", 40.0, 500, "A"),
        make_point("a4", 80.0, 200, "A"),
        make_point("b1", 300.0, 400, "B"),
        make_point("b2", 335.0, 100, "B"),
    ]
    candidates = [
        make_site(1, 1.0, "A"),
        make_site(2, 41.0, "A"),
        make_site(3, 79.0, "A"),
        make_site(4, 301.0, "B"),
        make_site(5, 334.0, "B"),
    ]
    return demand, candidates


def make_analysis(tmp_path, **overrides):
    demand, candidates = make_country()
    config = AnalysisConfig(results_dir=tmp_path, solver_method="greedy", **overrides)
    return AccessibilityAnalysis(
        config, demand, candidates, StraightLineIsochroneProvider(),
        store=ResultStore(tmp_path),
    )


class TestRunScenario:
    def test_selects_requested_count(self, tmp_path):
        result = make_analysis(tmp_path).run_scenario(3)
        assert result.facility_count_requested == 3
        assert result.facility_count_selected == 3
        assert {a.region: a.quota for a in result.allocations} == {"A": 2, "B": 1}
        assert result.facility_ids == [1, 2, 4]

    def test_nearest_facility_is_in_selection(self, tmp_path):
        result = make_analysis(tmp_path).run_scenario(3)
        selected = set(result.facility_ids)
        assert len(result.coverage) == 6
        for row in result.coverage:
            assert row.nearest_facility_id in selected
        by_id = {c.point_id: c for c in result.coverage}
        assert by_id["a1"].nearest_facility_id == 1
        assert by_id["a1"].distance_km == pytest.approx(1.0, abs=0.05)
        # Site 3 is not selected, so a4 falls back to site 2
        assert by_id["a4"].nearest_facility_id == 2

    def test_bands_monotone_and_plausible(self, tmp_path):
        result = make_analysis(tmp_path).run_scenario(3)
        for row in result.coverage:
            flags = list(row.reachable)
            assert flags == sorted(flags)
        by_id = {c.point_id: c for c in result.coverage}
        assert by_id["a1"].reachable_within(result.thresholds_km, 5.0)
        assert not by_id["a4"].reachable_within(result.thresholds_km, 30.0)
        assert not result.is_partial

    def test_persisted_and_idempotent(self, tmp_path):
        analysis = make_analysis(tmp_path)
        analysis.run_scenario(4)
        path = tmp_path / "accessibility_4_pharmacies.csv"
        first = path.read_bytes()
        analysis.run_scenario(4)
        assert path.read_bytes() == first

        frame = ResultStore(tmp_path).load_frame(4)
        assert list(frame.columns[:6]) == [
            "point_id", "population", "county", "municipality",
            "nearest_facility_id", "distance_km",
        ]
        assert band_column(50.0) in frame.columns

    def test_fewer_facilities_than_regions(self, tmp_path):
        with pytest.raises(InsufficientBudget):
            make_analysis(tmp_path).run_scenario(1)
        assert not list(tmp_path.glob("*.csv"))

    def test_region_without_enough_candidates(self, tmp_path):
        # 5 facilities: A gets 4 but only has 3 candidate sites
        with pytest.raises(InfeasibleRequest) as exc:
            make_analysis(tmp_path).run_scenario(5)
        assert exc.value.region == "A"

    def test_cancelled_scenario_is_not_persisted(self, tmp_path):
        event = threading.Event()
        event.set()
        with pytest.raises(ScenarioCancelled):
            make_analysis(tmp_path).run_scenario(3, cancel_event=event)
        assert not list(tmp_path.glob("*.csv"))

    def test_empty_inputs_rejected(self, tmp_path):
        demand, candidates = make_country()
        config = AnalysisConfig(results_dir=tmp_path)
        with pytest.raises(InputDataError):
            AccessibilityAnalysis(config, [], candidates, StraightLineIsochroneProvider())
        with pytest.raises(InputDataError):
            AccessibilityAnalysis(config, demand, [], StraightLineIsochroneProvider())


class TestRunSweep:
    def test_failures_do_not_stop_sweep(self, tmp_path):
        report = make_analysis(tmp_path).run_sweep([1, 2, 3, 5])
        assert sorted(report.results) == [2, 3]
        assert sorted(report.failures) == [1, 5]
        assert report.failures[1].kind == "InsufficientBudget"
        assert report.failures[5].kind == "InfeasibleRequest"
        assert not report.ok
        assert ResultStore(tmp_path).available_counts() == [2, 3]

    def test_parallel_matches_sequential(self, tmp_path):
        sequential = make_analysis(tmp_path / "seq").run_sweep([2, 3, 4])
        parallel = make_analysis(tmp_path / "par", max_parallel_scenarios=3).run_sweep([2, 3, 4])
        for n in (2, 3, 4):
            assert sequential.results[n].facility_ids == parallel.results[n].facility_ids
            assert (tmp_path / "seq" / f"accessibility_{n}_pharmacies.csv").read_bytes() == \
                (tmp_path / "par" / f"accessibility_{n}_pharmacies.csv").read_bytes()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
