"""
File-backed durable store.

Keeps the in-memory store as a read-through mirror (read-your-writes) and
persists every write under base_dir:

    experiments.json           experiment configs
    tallies.json               per-arm counters and external measurements
    assignments.{parquet|csv}  (experiment_id, user_id, variant_id, assigned_at)
    conversions.{parquet|csv}  (experiment_id, user_id)
    dropouts.{parquet|csv}     (experiment_id, user_id)
    metric_states.{parquet|csv}

Row tables are append-only between restarts: each write appends one line to
<name>.log.csv. On load the snapshot and its log are merged, the snapshot is
rewritten atomically and the log is removed.
"""

import io
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

import pandas as pd

from .config import DEFAULT_DATA_DIR
from .schema import ArmTally, Assignment, ExperimentConfig, ExperimentStatus, MetricState, ensure_utc
from .store import InMemoryExperimentStore

logger = logging.getLogger(__name__)

try:
    import pyarrow  # noqa: F401
    _USE_PARQUET = True
except ImportError:
    _USE_PARQUET = False

ASSIGNMENT_COLUMNS = ["experiment_id", "user_id", "variant_id", "assigned_at"]
PAIR_COLUMNS = ["experiment_id", "user_id"]
METRIC_COLUMNS = ["experiment_id", "variant_id", "metric_id", "count", "mean", "m2"]
METRIC_KEY = ["experiment_id", "variant_id", "metric_id"]

_STR_DTYPES = {"experiment_id": str, "user_id": str, "variant_id": str, "metric_id": str, "assigned_at": str}


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _table_path(base_dir: Path, name: str) -> Path:
    ext = "parquet" if _USE_PARQUET else "csv"
    return base_dir / f"{name}.{ext}"


def _log_path(base_dir: Path, name: str) -> Path:
    return base_dir / f"{name}.log.csv"


def _dtypes(columns: List[str]) -> dict:
    return {c: t for c, t in _STR_DTYPES.items() if c in columns}


def _read_table(path: Path, columns: List[str]) -> pd.DataFrame:
    if not path.exists():
        return pd.DataFrame(columns=columns)
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path, dtype=_dtypes(columns))


def _read_log(path: Path, columns: List[str]) -> pd.DataFrame:
    """Rows appended since the last compaction. A torn final line is dropped."""
    if not path.exists():
        return pd.DataFrame(columns=columns)
    text = path.read_text()
    if not text.endswith("\n"):
        text = text[: text.rfind("\n") + 1]
    if not text.strip():
        return pd.DataFrame(columns=columns)
    df = pd.read_csv(
        io.StringIO(text), names=columns, header=None, dtype=_dtypes(columns), on_bad_lines="skip"
    )
    return df.dropna()


def _write_table(df: pd.DataFrame, path: Path) -> None:
    tmp = path.with_name(path.name + ".tmp")
    if path.suffix == ".parquet":
        df.to_parquet(tmp, index=False)
    else:
        df.to_csv(tmp, index=False)
    tmp.replace(path)


def _append_rows(rows: List[dict], columns: List[str], path: Path) -> None:
    pd.DataFrame(rows, columns=columns).to_csv(path, mode="a", header=False, index=False)


def _read_json(path: Path) -> list:
    if not path.exists():
        return []
    with open(path) as f:
        return json.load(f)


def _write_json(data: list, path: Path) -> None:
    tmp = path.with_suffix(".tmp")
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2)
    tmp.replace(path)


class FileExperimentStore(InMemoryExperimentStore):
    """Durable adapter: in-memory mirror plus on-disk tables under base_dir."""

    def __init__(self, base_dir: str = DEFAULT_DATA_DIR):
        super().__init__()
        self.base_dir = _ensure_dir(Path(base_dir))
        self._io_lock = threading.Lock()
        self._load()

    def _compact(self, name: str, columns: List[str], key: List[str], keep: str) -> pd.DataFrame:
        """Merge snapshot and log for one table, persist the result and drop the log."""
        table_path = _table_path(self.base_dir, name)
        log_path = _log_path(self.base_dir, name)
        df = _read_table(table_path, columns)
        log = _read_log(log_path, columns)
        if len(log):
            merged = pd.concat([df, log], ignore_index=True) if len(df) else log
            df = merged.drop_duplicates(subset=key, keep=keep)
            _write_table(df[columns], table_path)
            logger.info(f"Compacted {len(log)} logged rows into {table_path.name}")
        if log_path.exists():
            log_path.unlink()
        return df

    def _load(self) -> None:
        for data in _read_json(self.base_dir / "experiments.json"):
            config = ExperimentConfig.from_dict(data)
            self._experiments[config.experiment_id] = config

        for data in _read_json(self.base_dir / "tallies.json"):
            tally = ArmTally.from_dict(data)
            self._tallies[(tally.experiment_id, tally.variant_id)] = tally

        assignments = self._compact("assignments", ASSIGNMENT_COLUMNS, PAIR_COLUMNS, keep="first")
        for row in assignments.to_dict("records"):
            a = Assignment(
                experiment_id=str(row["experiment_id"]),
                user_id=str(row["user_id"]),
                variant_id=str(row["variant_id"]),
                assigned_at=ensure_utc(pd.Timestamp(row["assigned_at"]).to_pydatetime()),
            )
            self._assignments[(a.experiment_id, a.user_id)] = a
            self._assignment_counts[a.experiment_id] = self._assignment_counts.get(a.experiment_id, 0) + 1

        conversions = self._compact("conversions", PAIR_COLUMNS, PAIR_COLUMNS, keep="first")
        for row in conversions.to_dict("records"):
            self._conversions.add((str(row["experiment_id"]), str(row["user_id"])))

        dropouts = self._compact("dropouts", PAIR_COLUMNS, PAIR_COLUMNS, keep="first")
        for row in dropouts.to_dict("records"):
            self._dropouts.add((str(row["experiment_id"]), str(row["user_id"])))

        # Latest update per key wins.
        metrics = self._compact("metric_states", METRIC_COLUMNS, METRIC_KEY, keep="last")
        for row in metrics.to_dict("records"):
            state = MetricState(
                experiment_id=str(row["experiment_id"]),
                variant_id=str(row["variant_id"]),
                metric_id=str(row["metric_id"]),
                count=int(row["count"]),
                mean=float(row["mean"]),
                m2=float(row["m2"]),
            )
            self._metric_states[(state.experiment_id, state.variant_id, state.metric_id)] = state

        logger.info(
            f"Loaded store from {self.base_dir}: {len(self._experiments)} experiments, "
            f"{len(self._assignments)} assignments"
        )

    # Writes go to the mirror first, then to disk.

    def insert_experiment(self, config: ExperimentConfig) -> None:
        super().insert_experiment(config)
        self._flush_experiments()

    def compare_and_update(
        self,
        experiment_id: str,
        expected_statuses: Iterable[ExperimentStatus],
        **changes: Any,
    ) -> Optional[ExperimentConfig]:
        updated = super().compare_and_update(experiment_id, expected_statuses, **changes)
        if updated is not None:
            self._flush_experiments()
        return updated

    def insert_assignment_if_absent(self, assignment: Assignment) -> Tuple[Assignment, bool]:
        stored, created = super().insert_assignment_if_absent(assignment)
        if created:
            row = {
                "experiment_id": stored.experiment_id,
                "user_id": stored.user_id,
                "variant_id": stored.variant_id,
                "assigned_at": stored.assigned_at.isoformat(),
            }
            self._append("assignments", ASSIGNMENT_COLUMNS, row)
        return stored, created

    def add_conversion_if_absent(self, experiment_id: str, user_id: str) -> bool:
        added = super().add_conversion_if_absent(experiment_id, user_id)
        if added:
            self._append("conversions", PAIR_COLUMNS, {"experiment_id": experiment_id, "user_id": user_id})
        return added

    def add_dropout_if_absent(self, experiment_id: str, user_id: str) -> bool:
        added = super().add_dropout_if_absent(experiment_id, user_id)
        if added:
            self._append("dropouts", PAIR_COLUMNS, {"experiment_id": experiment_id, "user_id": user_id})
        return added

    def put_metric_state(self, state: MetricState) -> None:
        super().put_metric_state(state)
        row = {
            "experiment_id": state.experiment_id,
            "variant_id": state.variant_id,
            "metric_id": state.metric_id,
            "count": state.count,
            "mean": state.mean,
            "m2": state.m2,
        }
        self._append("metric_states", METRIC_COLUMNS, row)

    def put_tally(self, tally: ArmTally) -> None:
        super().put_tally(tally)
        self._flush_tallies()

    def _append(self, name: str, columns: List[str], row: dict) -> None:
        with self._io_lock:
            _append_rows([row], columns, _log_path(self.base_dir, name))

    def _flush_experiments(self) -> None:
        with self._io_lock:
            with self._experiments_lock:
                data = [c.to_dict() for c in self._experiments.values()]
            _write_json(data, self.base_dir / "experiments.json")

    def _flush_tallies(self) -> None:
        with self._io_lock:
            with self._aggregates_lock:
                data = [t.to_dict() for t in self._tallies.values()]
            _write_json(data, self.base_dir / "tallies.json")


def get_store_summary(store: InMemoryExperimentStore, experiment_id: str) -> dict:
    """
    Get summary counts for an experiment.

    Returns:
        Dict with n_assignments, n_metric_states and per-variant participant counts
    """
    tallies = store.list_tallies(experiment_id)
    return {
        "n_assignments": store.count_assignments(experiment_id),
        "n_metric_states": len(store.list_metric_states(experiment_id)),
        "participants": {t.variant_id: t.participants for t in tallies},
    }
