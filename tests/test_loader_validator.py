"""Tests for prepared input loading, validation and region fallback."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import numpy as np
import pandas as pd
import pytest

from config.settings import AnalysisConfig
from data.loader import fill_missing_regions, find_input, load_prepared_inputs, load_table
from data.sample_data import generate_pharmacies_df, generate_population_df, generate_sample_csvs
from data.validator import validate_pharmacies, validate_population
from engine.errors import InputDataError


def make_pharmacies_df():
    return pd.DataFrame([
        {"pharmacy_id": 10, "lat": 59.30, "long": 18.00, "lan": "01", "kommun": "0180", "namn": "Apotek City"},
        {"pharmacy_id": 11, "lat": 59.35, "long": 18.10, "lan": "01", "kommun": "0180", "namn": None},
        {"pharmacy_id": 12, "lat": 57.70, "long": 11.97, "lan": "14", "kommun": "1480", "namn": "Apotek Väst"},
    ])


def make_population_df():
    return pd.DataFrame([
        {"id": "0001", "pop": 120, "lat": 59.31, "long": 18.01, "lan": "01", "kommun": "0180"},
        {"id": "0002", "pop": 0, "lat": 59.32, "long": 18.02, "lan": "01", "kommun": "0180"},
        {"id": "0003", "pop": 45, "lat": 57.71, "long": 11.98, "lan": "14", "kommun": "1480"},
        {"id": "0004", "pop": 8, "lat": 57.72, "long": 11.99, "lan": None, "kommun": None},
    ])


def write_inputs(data_dir, pharmacies=None, population=None):
    data_dir.mkdir(parents=True, exist_ok=True)
    (pharmacies if pharmacies is not None else make_pharmacies_df()).to_csv(
        data_dir / "pharmacies.csv", index=False)
    (population if population is not None else make_population_df()).to_csv(
        data_dir / "population_grid.csv", index=False)


class TestValidator:
    def test_valid_inputs(self):
        assert validate_pharmacies(make_pharmacies_df()).is_valid
        result = validate_population(make_population_df())
        assert result.is_valid
        # one unpopulated square, one unlabelled square
        assert len(result.warnings) == 2

    def test_missing_columns(self):
        result = validate_population(make_population_df().drop(columns=["pop"]))
        assert not result.is_valid
        assert "pop" in result.errors[0]

    def test_empty_file(self):
        result = validate_pharmacies(make_pharmacies_df().iloc[0:0])
        assert not result.is_valid

    def test_negative_population(self):
        df = make_population_df()
        df.loc[0, "pop"] = -5
        assert not validate_population(df).is_valid

    def test_fractional_population(self):
        df = make_population_df()
        df["pop"] = df["pop"].astype(float)
        df.loc[2, "pop"] = 0.5
        result = validate_population(df)
        assert not result.is_valid
        assert "0003" in result.errors[0]

    def test_duplicate_pharmacy_ids(self):
        df = make_pharmacies_df()
        df.loc[1, "pharmacy_id"] = 10
        result = validate_pharmacies(df)
        assert not result.is_valid
        assert "Duplicate" in result.errors[0]

    def test_coordinates_out_of_range(self):
        df = make_pharmacies_df()
        df.loc[0, "lat"] = 120.0
        assert not validate_pharmacies(df).is_valid


class TestRegionFallback:
    def test_borrows_nearest_labels_within_cap(self):
        df = fill_missing_regions(make_population_df(), 20.0)
        row = df[df["id"] == "0004"].iloc[0]
        assert (row["lan"], row["kommun"]) == ("14", "1480")

    def test_drops_rows_beyond_cap(self):
        df = make_population_df()
        df.loc[3, ["lat", "long"]] = [65.0, 20.0]
        filled = fill_missing_regions(df, 20.0)
        assert "0004" not in set(filled["id"])

    def test_disabled_fallback_drops_unlabelled(self):
        filled = fill_missing_regions(make_population_df(), None)
        assert len(filled) == 3


class TestLoadPreparedInputs:
    def test_loads_typed_models(self, tmp_path):
        write_inputs(tmp_path)
        candidates, demand = load_prepared_inputs(AnalysisConfig(data_dir=tmp_path))
        assert [c.site_id for c in candidates] == [10, 11, 12]
        assert candidates[0].name == "Apotek City"
        assert candidates[1].name is None
        # unpopulated square dropped, unlabelled one borrowed its region
        assert [d.point_id for d in demand] == ["0001", "0003", "0004"]
        assert demand[2].county == "14"

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputDataError):
            load_prepared_inputs(AnalysisConfig(data_dir=tmp_path))

    def test_invalid_table_raises(self, tmp_path):
        write_inputs(tmp_path, pharmacies=make_pharmacies_df().drop(columns=["lan"]))
        with pytest.raises(InputDataError) as exc:
            load_prepared_inputs(AnalysisConfig(data_dir=tmp_path))
        assert "lan" in str(exc.value)

    def test_fractional_population_raises_input_error(self, tmp_path):
        population = make_population_df()
        population["pop"] = population["pop"].astype(float)
        population.loc[0, "pop"] = 0.5
        write_inputs(tmp_path, population=population)
        with pytest.raises(InputDataError):
            load_prepared_inputs(AnalysisConfig(data_dir=tmp_path))

    def test_xlsx_inputs(self, tmp_path):
        make_pharmacies_df().to_excel(tmp_path / "pharmacies.xlsx", index=False, engine="openpyxl")
        make_population_df().to_excel(tmp_path / "population_grid.xlsx", index=False, engine="openpyxl")
        assert find_input(tmp_path, "pharmacies").suffix == ".xlsx"
        candidates, demand = load_prepared_inputs(AnalysisConfig(data_dir=tmp_path))
        assert len(candidates) == 3
        assert len(demand) == 3

    def test_unsupported_format(self, tmp_path):
        with pytest.raises(ValueError):
            load_table(tmp_path / "pharmacies.json")


class TestSampleData:
    def test_deterministic(self):
        pd.testing.assert_frame_equal(generate_population_df(), generate_population_df())
        pd.testing.assert_frame_equal(generate_pharmacies_df(), generate_pharmacies_df())

    def test_sample_files_load(self, tmp_path):
        generate_sample_csvs(str(tmp_path))
        candidates, demand = load_prepared_inputs(AnalysisConfig(data_dir=tmp_path))
        assert len(candidates) == 48
        assert len({d.county for d in demand}) == 4
        assert all(d.population > 0 for d in demand)
        assert np.all(np.diff([c.site_id for c in candidates]) > 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
