"""Prepared input loading: CSV/XLSX tables into typed model lists."""

from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from config.defaults import PHARMACY_FILE_STEM, POPULATION_FILE_STEM
from config.settings import AnalysisConfig
from engine.distance import haversine_matrix
from engine.errors import InputDataError
from logging_config import get_logger
from models.demand import CandidateSite, DemandPoint
from data.validator import ValidationResult, validate_pharmacies, validate_population

logger = get_logger(__name__)

# Identifier and region columns are read as text to keep codes like "0114" intact
PHARMACY_DTYPES = {"lan": str, "kommun": str, "namn": str}
POPULATION_DTYPES = {"id": str, "lan": str, "kommun": str}

SUPPORTED_SUFFIXES = (".csv", ".xlsx")


def load_table(path, dtype=None) -> pd.DataFrame:
    """Load a CSV or XLSX file into a DataFrame."""
    path = Path(path)
    name = path.name.lower()
    if name.endswith(".csv"):
        return pd.read_csv(path, dtype=dtype)
    elif name.endswith(".xlsx") or name.endswith(".xls"):
        return pd.read_excel(path, dtype=dtype, engine="openpyxl")
    else:
        raise ValueError(f"Unsupported file format: {name}. Use CSV or XLSX.")


def find_input(data_dir, stem: str) -> Path:
    """Locate `<stem>.csv` (preferred) or `<stem>.xlsx` in data_dir."""
    data_dir = Path(data_dir)
    for suffix in SUPPORTED_SUFFIXES:
        candidate = data_dir / f"{stem}{suffix}"
        if candidate.exists():
            return candidate
    raise InputDataError(
        f"Prepared input '{stem}' not found in {data_dir} "
        f"(expected {' or '.join(stem + s for s in SUPPORTED_SUFFIXES)})"
    )


def fill_missing_regions(df: pd.DataFrame, max_km: Optional[float], label: str = "rows") -> pd.DataFrame:
    """Borrow county/municipality labels from the nearest fully labelled row.

    Rows are filled only when the neighbour lies within `max_km`; rows that
    stay unlabelled are dropped. `max_km=None` drops every unlabelled row.
    """
    missing = df["lan"].isna() | df["kommun"].isna()
    if not missing.any():
        return df

    df = df.copy()
    labelled = df[~missing]
    if max_km is not None and not labelled.empty:
        dist = haversine_matrix(
            df.loc[missing, "lat"].to_numpy(dtype=np.float64),
            df.loc[missing, "long"].to_numpy(dtype=np.float64),
            labelled["lat"].to_numpy(dtype=np.float64),
            labelled["long"].to_numpy(dtype=np.float64),
        )
        nearest = dist.argmin(axis=1)
        within = dist[np.arange(len(nearest)), nearest] <= max_km
        targets = df.index[missing][within]
        sources = labelled.index[nearest[within]]
        df.loc[targets, "lan"] = labelled.loc[sources, "lan"].to_numpy()
        df.loc[targets, "kommun"] = labelled.loc[sources, "kommun"].to_numpy()
        logger.info(f"Borrowed region labels for {len(targets)} {label} from nearest neighbours")

    still_missing = df["lan"].isna() | df["kommun"].isna()
    if still_missing.any():
        logger.warning(f"Dropping {int(still_missing.sum())} {label} with no region within reach")
        df = df[~still_missing]
    return df


def _raise_if_invalid(result: ValidationResult):
    for warning in result.warnings:
        logger.warning(warning)
    if not result.is_valid:
        raise InputDataError("; ".join(result.errors))


def _site_id(value):
    # Integer ids stay integers; anything else is compared as text
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return str(value).strip()


def parse_pharmacies(df: pd.DataFrame) -> List[CandidateSite]:
    """Convert a pharmacies DataFrame into CandidateSite objects."""
    has_name = "namn" in df.columns
    ids = [_site_id(v) for v in df["pharmacy_id"]]
    if len({type(i) for i in ids}) > 1:
        ids = [str(i) for i in ids]

    sites = []
    for site_id, (_, row) in zip(ids, df.iterrows()):
        name = None
        if has_name and pd.notna(row.get("namn")):
            name = str(row["namn"]).strip()
        sites.append(CandidateSite(
            site_id=site_id,
            lat=float(row["lat"]),
            lon=float(row["long"]),
            county=str(row["lan"]).strip(),
            municipality=str(row["kommun"]).strip(),
            name=name,
        ))
    return sites


def parse_population(df: pd.DataFrame) -> List[DemandPoint]:
    """Convert a population grid DataFrame into DemandPoint objects."""
    points = []
    for _, row in df.iterrows():
        points.append(DemandPoint(
            point_id=str(row["id"]).strip(),
            lat=float(row["lat"]),
            lon=float(row["long"]),
            population=int(row["pop"]),
            county=str(row["lan"]).strip(),
            municipality=str(row["kommun"]).strip(),
        ))
    return points


def prepare_pharmacies(df: pd.DataFrame, region_fallback_km: Optional[float]) -> List[CandidateSite]:
    _raise_if_invalid(validate_pharmacies(df))
    df = fill_missing_regions(df, region_fallback_km, label="pharmacies")
    return parse_pharmacies(df)


def prepare_population(df: pd.DataFrame, region_fallback_km: Optional[float]) -> List[DemandPoint]:
    _raise_if_invalid(validate_population(df))
    # Only populated squares take part in the analysis
    df = df[pd.to_numeric(df["pop"]) > 0]
    df = fill_missing_regions(df, region_fallback_km, label="grid squares")
    if df.empty:
        raise InputDataError("Population Grid: no populated squares left after preparation.")
    return parse_population(df)


def load_prepared_inputs(config: AnalysisConfig) -> Tuple[List[CandidateSite], List[DemandPoint]]:
    """Load and validate candidate pharmacies and the population grid from config.data_dir."""
    pharmacy_path = find_input(config.data_dir, PHARMACY_FILE_STEM)
    population_path = find_input(config.data_dir, POPULATION_FILE_STEM)

    candidates = prepare_pharmacies(load_table(pharmacy_path, PHARMACY_DTYPES), config.region_fallback_km)
    demand = prepare_population(load_table(population_path, POPULATION_DTYPES), config.region_fallback_km)

    if not candidates:
        raise InputDataError("Pharmacies: no candidate sites left after preparation.")

    logger.info(
        f"Loaded {len(candidates)} candidate pharmacies and {len(demand)} populated grid squares "
        f"(total population: {sum(p.population for p in demand):,})"
    )
    return candidates, demand
