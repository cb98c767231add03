"""Descriptive statistics over persisted accessibility results."""

import re
from typing import Dict, List, Mapping, Tuple

import numpy as np
import pandas as pd

from logging_config import get_logger
from models.coverage import band_column

logger = get_logger(__name__)

BAND_PATTERN = re.compile(r"^within_(.+)km_driving$")
REGION_COLUMNS = {"county": "county", "municipality": "municipality"}


def band_columns(frame: pd.DataFrame) -> List[Tuple[float, str]]:
    """(threshold, column) pairs present in a results frame, ascending."""
    found = []
    for col in frame.columns:
        match = BAND_PATTERN.match(col)
        if match:
            found.append((float(match.group(1)), col))
    return sorted(found)


def _pct(population: pd.Series, mask: pd.Series) -> float:
    total = population.sum()
    return float(population[mask.astype(bool)].sum() / total * 100) if total > 0 else 0.0


def _stats(group: pd.DataFrame, bands: List[Tuple[float, str]]) -> Dict:
    weights = group["population"]
    row = {
        "population": int(weights.sum()),
        "squares": int(len(group)),
        "mean_distance_km": float(np.average(group["distance_km"], weights=weights)) if weights.sum() > 0 else float("nan"),
        "median_distance_km": float(group["distance_km"].median()),
        "max_distance_km": float(group["distance_km"].max()),
    }
    for t, col in bands:
        row[f"pct_within_{t:g}km"] = _pct(weights, group[col])
    return row


def national_summary(frame: pd.DataFrame) -> Dict:
    """Population-weighted distance statistics and band coverage for one scenario."""
    if frame.empty:
        raise ValueError("Cannot summarise an empty results frame")
    return _stats(frame, band_columns(frame))


def region_summary(frame: pd.DataFrame, by: str = "county") -> pd.DataFrame:
    """Per-county or per-municipality statistics, most populous first."""
    if by not in REGION_COLUMNS:
        raise ValueError(f"by must be one of {list(REGION_COLUMNS)}, got '{by}'")
    key = REGION_COLUMNS[by]
    bands = band_columns(frame)

    rows = []
    for region, group in frame.groupby(key, sort=True):
        row = {by: region}
        row.update(_stats(group, bands))
        rows.append(row)

    summary = pd.DataFrame(rows)
    if summary.empty:
        return summary
    return summary.sort_values(["population", by], ascending=[False, True]).reset_index(drop=True)


def compare_scenarios(
    frames: Mapping[int, pd.DataFrame],
    benefit_threshold_km: float = 10.0,
) -> pd.DataFrame:
    """One row per facility count with marginal benefit per extra facility.

    marginal_benefit is the change in the population share within
    `benefit_threshold_km` divided by the change in facility count, relative
    to the next smaller scenario. Scenarios without that band get NaN.
    """
    benefit_col = f"pct_within_{benefit_threshold_km:g}km"
    rows = []
    missing = []
    for n in sorted(frames):
        frame = frames[n]
        if band_column(benefit_threshold_km) not in frame.columns:
            missing.append(n)
        row = {"n_pharmacies": n}
        row.update(national_summary(frame))
        rows.append(row)

    if missing:
        logger.warning(
            f"No {benefit_threshold_km:g} km driving band in scenarios {missing}; "
            f"marginal benefit left empty there"
        )

    comparison = pd.DataFrame(rows)
    if comparison.empty:
        return comparison
    if benefit_col not in comparison.columns:
        comparison["marginal_benefit"] = np.nan
        return comparison
    comparison["marginal_benefit"] = (
        comparison[benefit_col].diff() / comparison["n_pharmacies"].diff()
    )
    return comparison


def format_national_summary(n: int, stats: Mapping) -> str:
    """Plain-text report lines for the CLI."""
    lines = [
        f"Scenario: {n} pharmacies",
        f"  Population:            {stats['population']:,} in {stats['squares']:,} squares",
        f"  Mean distance (km):    {stats['mean_distance_km']:.2f}",
        f"  Median distance (km):  {stats['median_distance_km']:.2f}",
        f"  Max distance (km):     {stats['max_distance_km']:.2f}",
    ]
    for key in (k for k in stats if k.startswith("pct_within_")):
        label = key[len("pct_within_"):]
        lines.append(f"  Within {label:>5} driving: {stats[key]:.1f}%")
    return "\n".join(lines)
