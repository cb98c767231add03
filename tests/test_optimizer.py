"""Tests for the maximum coverage optimizer."""

import sys
import os
import threading
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import numpy as np
import pytest

from engine.allocation_engine import build_region_allocations
from engine.errors import InfeasibleRequest, ScenarioCancelled
from engine.optimizer import (
    RegionalMCLPSolver, build_coverage_matrix, exact_max_coverage,
    greedy_max_coverage, optimize_coverage, solve,
)
from models.demand import CandidateSite, DemandPoint

KM_PER_DEG = 111.195  # one degree of longitude on the equator


def make_point(pid, x_km, pop, county="A"):
    return DemandPoint(pid, 0.0, x_km / KM_PER_DEG, pop, county, county + "1")


def make_site(site_id, x_km, county="A"):
    return CandidateSite(site_id, 0.0, x_km / KM_PER_DEG, county)


def make_line_scenario():
    """Site 1 covers 100+150 people, site 2 covers 200, site 3 covers 50."""
    sites = [make_site(1, 0.0), make_site(2, 55.0), make_site(3, 111.0)]
    demand = [
        make_point("p1", 1.0, 100),
        make_point("p2", -2.0, 150),
        make_point("p3", 56.0, 200),
        make_point("p4", 111.0, 50),
    ]
    return sites, demand


def make_greedy_trap():
    """Site 3 covers the two heavy points but sites 1+2 together cover all four."""
    sites = [make_site(1, 4.5), make_site(2, 22.5), make_site(3, 13.5)]
    demand = [
        make_point("c", 0.0, 55),
        make_point("a", 9.0, 60),
        make_point("b", 18.0, 60),
        make_point("d", 27.0, 55),
    ]
    return sites, demand


class TestCoverageMatrix:
    def test_radius(self):
        sites, demand = make_line_scenario()
        coverage = build_coverage_matrix(sites, demand, 10.0)
        assert coverage.tolist() == [
            [True, True, False, False],
            [False, False, True, False],
            [False, False, False, True],
        ]

    def test_chunking_does_not_change_result(self):
        sites, demand = make_line_scenario()
        assert np.array_equal(
            build_coverage_matrix(sites, demand, 10.0, chunk_size=1),
            build_coverage_matrix(sites, demand, 10.0),
        )


class TestGreedy:
    def test_picks_largest_marginal_gain(self):
        coverage = np.array([[1, 1, 0], [0, 0, 1]], dtype=bool)
        selection = greedy_max_coverage(coverage, np.array([100, 150, 200]), 1)
        assert selection.selected == [0]
        assert selection.covered_weight == 250

    def test_ties_go_to_lowest_index(self):
        coverage = np.array([[0, 1], [1, 0], [1, 0]], dtype=bool)
        selection = greedy_max_coverage(coverage, np.array([50, 50]), 1)
        assert selection.selected == [0]

    def test_zero_gain_fill_in_id_order(self):
        coverage = np.array([[0, 0], [1, 1], [0, 0], [1, 0]], dtype=bool)
        selection = greedy_max_coverage(coverage, np.array([10, 20]), 3)
        assert selection.selected == [1, 0, 2]
        assert selection.marginal_gains == [30, 0, 0]

    def test_deterministic(self):
        rng = np.random.default_rng(3)
        coverage = rng.random((30, 200)) < 0.1
        weights = rng.integers(1, 500, 200)
        first = greedy_max_coverage(coverage, weights, 8)
        second = greedy_max_coverage(coverage.copy(), weights.copy(), 8)
        assert first.selected == second.selected


class TestExact:
    def test_beats_greedy_on_trap(self):
        sites, demand = make_greedy_trap()
        ordered, greedy = optimize_coverage(demand, sites, 10.0, 2, method="greedy")
        _, exact = optimize_coverage(demand, sites, 10.0, 2, method="exact")
        assert sorted(ordered[i].site_id for i in greedy.selected) == [1, 3]
        assert greedy.covered_weight == 175
        assert [ordered[i].site_id for i in exact.selected] == [1, 2]
        assert exact.covered_weight == 230
        assert exact.method == "exact"

    def test_equal_coverage_resolves_to_lower_ids(self):
        coverage = np.array([[1, 0], [1, 0], [0, 1], [0, 1]], dtype=bool)
        selection = exact_max_coverage(coverage, np.array([10, 10]), 2)
        assert selection.selected == [0, 2]

    def test_selects_exact_count_when_coverage_saturates(self):
        coverage = np.array([[1, 1], [0, 0], [0, 0]], dtype=bool)
        selection = exact_max_coverage(coverage, np.array([5, 5]), 2)
        assert len(selection.selected) == 2
        assert 0 in selection.selected
        assert selection.covered_weight == 10


class TestSolve:
    def test_concrete_scenario(self):
        sites, demand = make_line_scenario()
        for method in ("greedy", "exact"):
            assert [f.site_id for f in solve(demand, sites, 10.0, 1, method=method)] == [1]
            chosen = solve(demand, sites, 10.0, 2, method=method)
            assert sorted(f.site_id for f in chosen) == [1, 2]

    def test_count_equal_to_candidates_selects_all(self):
        sites, demand = make_line_scenario()
        chosen = solve(demand, sites, 10.0, len(sites))
        assert sorted(f.site_id for f in chosen) == [1, 2, 3]

    def test_zero_count_selects_none(self):
        sites, demand = make_line_scenario()
        assert solve(demand, sites, 10.0, 0) == []

    def test_more_than_candidates_is_infeasible(self):
        sites, demand = make_line_scenario()
        with pytest.raises(InfeasibleRequest) as exc:
            solve(demand, sites, 10.0, 4)
        assert exc.value.requested == 4
        assert exc.value.available == 3

    def test_input_order_does_not_matter(self):
        sites, demand = make_line_scenario()
        forward = solve(demand, sites, 10.0, 2, method="greedy")
        backward = solve(demand, list(reversed(sites)), 10.0, 2, method="greedy")
        assert [f.site_id for f in forward] == [f.site_id for f in backward]

    def test_facilities_tagged_with_scenario(self):
        sites, demand = make_line_scenario()
        chosen = solve(demand, sites, 10.0, 1, scenario=300, region="A")
        assert chosen[0].facility_count == 300
        assert chosen[0].region == "A"
        assert chosen[0].covered_population == 250


class TestRegionalSolver:
    def make_two_regions(self):
        sites, demand = make_line_scenario()
        sites_b = [make_site(11, 500.0, "B"), make_site(12, 520.0, "B")]
        demand_b = [make_point("q1", 501.0, 80, "B"), make_point("q2", 519.0, 20, "B")]
        return sites + sites_b, demand + demand_b

    def test_union_of_region_selections(self):
        sites, demand = self.make_two_regions()
        allocations = build_region_allocations({"A": 500, "B": 100}, 3)
        solver = RegionalMCLPSolver(method="greedy", max_workers=2)
        chosen = solver.select(demand, sites, allocations, 10.0, 3)
        assert [(f.region, f.site_id) for f in chosen] == [("A", 1), ("A", 2), ("B", 11)]

    def test_region_quota_above_candidates(self):
        sites, demand = self.make_two_regions()
        allocations = build_region_allocations({"A": 100, "B": 10_000}, 5)
        solver = RegionalMCLPSolver(method="greedy")
        with pytest.raises(InfeasibleRequest) as exc:
            solver.select(demand, sites, allocations, 10.0, 5)
        assert exc.value.region == "B"

    def test_cancelled_before_start(self):
        sites, demand = self.make_two_regions()
        allocations = build_region_allocations({"A": 500, "B": 100}, 3)
        event = threading.Event()
        event.set()
        with pytest.raises(ScenarioCancelled):
            RegionalMCLPSolver(method="greedy").select(demand, sites, allocations, 10.0, 3, event)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
