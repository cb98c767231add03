"""Schema validation for prepared pharmacy and population tables."""

from dataclasses import dataclass, field
from typing import List
import pandas as pd


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


PHARMACY_REQUIRED_COLUMNS = [
    "pharmacy_id",
    "lat",
    "long",
    "lan",
    "kommun",
]

POPULATION_REQUIRED_COLUMNS = [
    "id",
    "pop",
    "lat",
    "long",
    "lan",
    "kommun",
]


def _check_required_columns(df: pd.DataFrame, required: List[str], file_label: str) -> ValidationResult:
    result = ValidationResult()
    missing = [col for col in required if col not in df.columns]
    if missing:
        result.is_valid = False
        result.errors.append(f"{file_label}: Missing required columns: {', '.join(missing)}")
    if df.empty:
        result.is_valid = False
        result.errors.append(f"{file_label}: File contains no data rows.")
    return result


def _check_coordinates(df: pd.DataFrame, result: ValidationResult, file_label: str):
    lat = pd.to_numeric(df["lat"], errors="coerce")
    lon = pd.to_numeric(df["long"], errors="coerce")
    if lat.isna().any() or lon.isna().any():
        result.is_valid = False
        result.errors.append(f"{file_label}: lat/long must be numeric and present on every row.")
        return
    if ((lat < -90) | (lat > 90)).any() or ((lon < -180) | (lon > 180)).any():
        result.is_valid = False
        result.errors.append(f"{file_label}: Coordinates out of range (lat -90..90, long -180..180).")


def _check_region_labels(df: pd.DataFrame, result: ValidationResult, file_label: str):
    unlabelled = int((df["lan"].isna() | df["kommun"].isna()).sum())
    if unlabelled:
        result.warnings.append(
            f"{file_label}: {unlabelled} rows lack county/municipality labels. "
            "Labels will be borrowed from the nearest labelled row where possible."
        )


def validate_pharmacies(df: pd.DataFrame) -> ValidationResult:
    result = _check_required_columns(df, PHARMACY_REQUIRED_COLUMNS, "Pharmacies")
    if not result.is_valid:
        return result

    _check_coordinates(df, result, "Pharmacies")

    if df["pharmacy_id"].isna().any():
        result.is_valid = False
        result.errors.append("Pharmacies: pharmacy_id is missing on some rows.")

    dupes = df.duplicated(subset=["pharmacy_id"], keep=False)
    if dupes.any():
        result.is_valid = False
        result.errors.append(
            f"Pharmacies: Duplicate pharmacy ids: {df[dupes]['pharmacy_id'].unique().tolist()}"
        )

    _check_region_labels(df, result, "Pharmacies")
    return result


def validate_population(df: pd.DataFrame) -> ValidationResult:
    result = _check_required_columns(df, POPULATION_REQUIRED_COLUMNS, "Population Grid")
    if not result.is_valid:
        return result

    _check_coordinates(df, result, "Population Grid")

    pop = pd.to_numeric(df["pop"], errors="coerce")
    if pop.isna().any():
        result.is_valid = False
        result.errors.append("Population Grid: pop must be numeric and present on every row.")
    elif (pop < 0).any():
        result.is_valid = False
        result.errors.append("Population Grid: pop cannot be negative.")
    elif (pop % 1 != 0).any():
        result.is_valid = False
        bad = df.loc[pop % 1 != 0, "id"].tolist()[:10]
        result.errors.append(f"Population Grid: pop must be a whole number of people: {bad}")
    elif (pop == 0).any():
        result.warnings.append(
            f"Population Grid: {int((pop == 0).sum())} unpopulated squares will be ignored."
        )

    dupes = df.duplicated(subset=["id"], keep=False)
    if dupes.any():
        result.is_valid = False
        result.errors.append(
            f"Population Grid: Duplicate square ids: {df[dupes]['id'].unique().tolist()[:10]}"
        )

    _check_region_labels(df, result, "Population Grid")
    return result
