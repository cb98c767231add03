"""Generate a deterministic synthetic country of prepared input files."""

import os

import numpy as np
import pandas as pd

from config.defaults import PHARMACY_FILE_STEM, POPULATION_FILE_STEM

# (county code, county name, centre lon) - counties sit side by side along one latitude band
COUNTIES = [
    ("01", "Norrvik", 13.5),
    ("02", "Sjöbacka", 14.5),
    ("03", "Östmark", 15.5),
    ("04", "Lundhed", 16.5),
]
BASE_LAT = 57.0
GRID_STEP_DEG = 0.05
GRID_SIZE = 20            # squares per side within each county
SITES_PER_COUNTY = 12


def _municipality(county_code: str, lat: float) -> str:
    # Two municipalities per county: north and south halves
    return f"{county_code}{'80' if lat >= BASE_LAT + GRID_STEP_DEG * GRID_SIZE / 2 else '20'}"


def generate_population_df(seed: int = 42) -> pd.DataFrame:
    """Population grid squares around a few towns per county; only populated squares kept."""
    rng = np.random.default_rng(seed)
    rows = []
    for code, _, centre_lon in COUNTIES:
        west = centre_lon - GRID_STEP_DEG * GRID_SIZE / 2
        towns = [
            (BASE_LAT + rng.uniform(0.1, 0.9), west + rng.uniform(0.1, 0.9), rng.integers(2000, 8000))
            for _ in range(3)
        ]
        for i in range(GRID_SIZE):
            for j in range(GRID_SIZE):
                lat = round(BASE_LAT + (i + 0.5) * GRID_STEP_DEG, 5)
                lon = round(west + (j + 0.5) * GRID_STEP_DEG, 5)
                intensity = sum(
                    size * np.exp(-((lat - t_lat) ** 2 + (lon - t_lon) ** 2) / 0.01)
                    for t_lat, t_lon, size in towns
                )
                pop = int(rng.poisson(intensity / 40))
                if pop <= 0:
                    continue
                rows.append({
                    "id": f"{code}{i:02d}{j:02d}",
                    "pop": pop,
                    "lat": lat,
                    "long": lon,
                    "lan": code,
                    "kommun": _municipality(code, lat),
                })
    return pd.DataFrame(rows)


def generate_pharmacies_df(seed: int = 42) -> pd.DataFrame:
    """Candidate pharmacy sites scattered over each county."""
    rng = np.random.default_rng(seed + 1)
    rows = []
    site_id = 1
    for code, name, centre_lon in COUNTIES:
        west = centre_lon - GRID_STEP_DEG * GRID_SIZE / 2
        for k in range(SITES_PER_COUNTY):
            lat = round(BASE_LAT + rng.uniform(0.02, 0.98), 5)
            lon = round(west + rng.uniform(0.02, 0.98), 5)
            rows.append({
                "pharmacy_id": site_id,
                "lat": lat,
                "long": lon,
                "lan": code,
                "kommun": _municipality(code, lat),
                "namn": f"Apotek {name} {k + 1}",
            })
            site_id += 1
    return pd.DataFrame(rows)


def generate_sample_csvs(output_dir: str, seed: int = 42):
    """Write prepared pharmacy and population CSV files to the given directory."""
    os.makedirs(output_dir, exist_ok=True)
    generate_pharmacies_df(seed).to_csv(os.path.join(output_dir, f"{PHARMACY_FILE_STEM}.csv"), index=False)
    generate_population_df(seed).to_csv(os.path.join(output_dir, f"{POPULATION_FILE_STEM}.csv"), index=False)


def generate_sample_excel(output_dir: str, seed: int = 42):
    """Write the same datasets as .xlsx files."""
    os.makedirs(output_dir, exist_ok=True)
    generate_pharmacies_df(seed).to_excel(
        os.path.join(output_dir, f"{PHARMACY_FILE_STEM}.xlsx"), index=False, engine="openpyxl"
    )
    generate_population_df(seed).to_excel(
        os.path.join(output_dir, f"{POPULATION_FILE_STEM}.xlsx"), index=False, engine="openpyxl"
    )
