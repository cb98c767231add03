"""Persist scenario results as CSV rows plus a JSON metadata sidecar."""

import json
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from models.scenario import ScenarioResult

RESULT_PATTERN = re.compile(r"^accessibility_(\d+)_pharmacies\.csv$")
DISTANCE_FORMAT = "%.6f"


class ResultStore:
    """One record set per facility count under `results_dir`."""

    def __init__(self, results_dir):
        self.results_dir = Path(results_dir)

    def csv_path(self, facility_count: int) -> Path:
        return self.results_dir / f"accessibility_{facility_count}_pharmacies.csv"

    def metadata_path(self, facility_count: int) -> Path:
        return self.results_dir / f"accessibility_{facility_count}_pharmacies.json"

    @staticmethod
    def _write_atomic(path: Path, text: str):
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(tmp, path)

    def save(self, result: ScenarioResult) -> Path:
        """Write the rows and metadata; rows are byte-identical for identical inputs."""
        self.results_dir.mkdir(parents=True, exist_ok=True)
        n = result.facility_count_requested

        rows = result.to_frame().to_csv(index=False, float_format=DISTANCE_FORMAT, lineterminator="\n")
        self._write_atomic(self.csv_path(n), rows)

        metadata = {
            "facility_count_requested": n,
            "facility_count_selected": result.facility_count_selected,
            "created_at": result.created_at.isoformat(),
            "radius_km": result.radius_km,
            "thresholds_km": list(result.thresholds_km),
            "selected_facility_ids": [_jsonable(i) for i in result.facility_ids],
            "region_quotas": {a.region: a.quota for a in result.allocations},
            "warnings": [
                {
                    "facility_ids": [_jsonable(i) for i in w.facility_ids],
                    "thresholds_km": list(w.thresholds_km),
                    "message": w.message,
                    "batch_index": w.batch_index,
                }
                for w in result.warnings
            ],
        }
        self._write_atomic(self.metadata_path(n), json.dumps(metadata, indent=2, ensure_ascii=False))
        return self.csv_path(n)

    def available_counts(self) -> List[int]:
        if not self.results_dir.exists():
            return []
        counts = []
        for path in self.results_dir.iterdir():
            match = RESULT_PATTERN.match(path.name)
            if match:
                counts.append(int(match.group(1)))
        return sorted(counts)

    def load_frame(self, facility_count: int) -> pd.DataFrame:
        path = self.csv_path(facility_count)
        if not path.exists():
            raise FileNotFoundError(f"No persisted results for {facility_count} pharmacies at {path}")
        return pd.read_csv(path, dtype={"point_id": str, "county": str, "municipality": str})

    def load_metadata(self, facility_count: int) -> Dict:
        with open(self.metadata_path(facility_count), encoding="utf-8") as f:
            return json.load(f)

    def load_all(self, counts: Optional[Sequence[int]] = None) -> Dict[int, pd.DataFrame]:
        counts = list(counts) if counts is not None else self.available_counts()
        return {n: self.load_frame(n) for n in counts}


def _jsonable(value):
    # numpy integer ids from pandas-loaded tables
    return value.item() if hasattr(value, "item") else value
