# src/clincore/remedy_engine/reference.py
"""
Reference data (rubrics + remedies) for the remedy engine.

The engine only ever reads a ``ReferenceSnapshot``: an immutable bundle of
rubrics, remedies, id maps and a prebuilt ``RubricIndex``. The cache swaps
the whole snapshot in a single assignment, so a request that grabbed a
snapshot keeps using it even while a reload runs.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import pandas as pd

from clincore.remedy_engine.errors import ReferenceDataUnavailable
from clincore.remedy_engine.matcher import RubricIndex
from clincore.remedy_engine.models import Remedy, Rubric

_log = logging.getLogger("clincore.remedy_engine.reference")


@dataclass(frozen=True)
class ReferenceSnapshot:
    rubrics: Tuple[Rubric, ...]
    remedies: Tuple[Remedy, ...]
    index: RubricIndex = field(compare=False)
    rubrics_by_id: Mapping[str, Rubric] = field(compare=False, hash=False)
    remedies_by_id: Mapping[str, Remedy] = field(compare=False, hash=False)
    version: int = 0

    @classmethod
    def build(
        cls,
        rubrics: Iterable[Rubric],
        remedies: Iterable[Remedy],
        stop_words: Iterable[str] = (),
        version: int = 0,
    ) -> "ReferenceSnapshot":
        rubrics = tuple(sorted(rubrics, key=lambda r: r.id))
        remedies = tuple(sorted(remedies, key=lambda r: r.id))
        return cls(
            rubrics=rubrics,
            remedies=remedies,
            index=RubricIndex(rubrics, stop_words),
            rubrics_by_id={r.id: r for r in rubrics},
            remedies_by_id={r.id: r for r in remedies},
            version=version,
        )


class ReferenceDataSource(Protocol):
    def list_rubrics(self, source: Optional[str] = None) -> Sequence[Rubric]: ...

    def list_remedies(self) -> Sequence[Remedy]: ...


class StaticReferenceSource:
    """In-memory source. Used by tests and for embedding a fixed repertory."""

    def __init__(self, rubrics: Iterable[Rubric], remedies: Iterable[Remedy]) -> None:
        self._rubrics = tuple(rubrics)
        self._remedies = tuple(remedies)

    def list_rubrics(self, source: Optional[str] = None) -> Sequence[Rubric]:
        if source is None:
            return self._rubrics
        return tuple(r for r in self._rubrics if r.repertory_source.casefold() == source.casefold())

    def list_remedies(self) -> Sequence[Remedy]:
        return self._remedies


# ----------------------------
# SQLite repertory
# ----------------------------

def _table_columns(con: sqlite3.Connection, table: str) -> List[str]:
    cur = con.cursor()
    cur.execute(f"PRAGMA table_info('{table}')")
    return [str(r[1]) for r in cur.fetchall()]


def detect_rubric_remedies_cols(con: sqlite3.Connection) -> Tuple[str, str]:
    cols = set(c.lower() for c in _table_columns(con, "rubric_remedies"))
    remedy_candidates = ["remedy_id", "remedy", "remedy_abbreviation", "abbr", "rem"]
    grade_candidates = ["grade", "degree", "deg", "value", "weight"]

    remedy_col = next((c for c in remedy_candidates if c in cols), None)
    grade_col = next((c for c in grade_candidates if c in cols), None)

    if not remedy_col:
        raise RuntimeError("Could not detect remedy column in rubric_remedies table.")
    if not grade_col:
        raise RuntimeError("Could not detect grade/degree column in rubric_remedies table.")

    return remedy_col, grade_col


def _json_list(value: Any) -> List[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    text = str(value).strip()
    if not text:
        return []
    if text.startswith("["):
        return [str(v) for v in json.loads(text)]
    # plain comma separated
    return [p.strip() for p in text.split(",") if p.strip()]


def _json_map(value: Any) -> Dict[str, str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return {}
    text = str(value).strip()
    if not text:
        return {}
    return {str(k): str(v) for k, v in json.loads(text).items()}


def _opt(row: Mapping[str, Any], key: str, default: Any = None) -> Any:
    value = row.get(key, default)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    return value


class SqliteRepertorySource:
    """
    Reads a repertory database with three tables:

        rubrics(id, text, repertory_source, chapter)
        rubric_remedies(rubric_id, <remedy col>, <grade col>)
        remedies(id, name, category, clinical_indications, incompatibilities,
                 contraindications, supported_potencies, repetition_by_severity)

    List columns hold JSON arrays (or comma separated text); the repetition
    column holds a JSON object.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        if not Path(self.db_path).exists():
            raise FileNotFoundError(f"DB not found: {self.db_path}")
        return sqlite3.connect(self.db_path)

    def list_rubrics(self, source: Optional[str] = None) -> Sequence[Rubric]:
        con = self._connect()
        try:
            remedy_col, grade_col = detect_rubric_remedies_cols(con)
            rubrics_df = pd.read_sql_query(
                "SELECT id, text, repertory_source, chapter FROM rubrics", con
            )
            grades_df = pd.read_sql_query(
                f"SELECT rubric_id, {remedy_col} AS remedy_id, {grade_col} AS grade "
                f"FROM rubric_remedies",
                con,
            )
        finally:
            con.close()

        if source is not None:
            mask = rubrics_df["repertory_source"].astype(str).str.casefold() == source.casefold()
            rubrics_df = rubrics_df[mask]

        grades_df = grades_df.dropna(subset=["rubric_id", "remedy_id", "grade"])
        grades: Dict[str, Dict[str, int]] = {}
        for row in grades_df.itertuples(index=False):
            grades.setdefault(str(row.rubric_id), {})[str(row.remedy_id)] = int(row.grade)

        out: List[Rubric] = []
        for row in rubrics_df.to_dict(orient="records"):
            rid = str(row["id"])
            out.append(
                Rubric(
                    id=rid,
                    text=str(_opt(row, "text", "")),
                    repertory_source=str(_opt(row, "repertory_source", "")),
                    chapter=str(_opt(row, "chapter", "")),
                    remedy_grades=grades.get(rid, {}),
                )
            )
        return out

    def list_remedies(self) -> Sequence[Remedy]:
        con = self._connect()
        try:
            df = pd.read_sql_query("SELECT * FROM remedies", con)
        finally:
            con.close()

        out: List[Remedy] = []
        for row in df.to_dict(orient="records"):
            out.append(
                Remedy(
                    id=str(row["id"]),
                    name=str(_opt(row, "name", row["id"])),
                    category=str(_opt(row, "category", "Unknown")),
                    clinical_indications=frozenset(_json_list(row.get("clinical_indications"))),
                    incompatibilities=frozenset(_json_list(row.get("incompatibilities"))),
                    contraindications=frozenset(_json_list(row.get("contraindications"))),
                    supported_potencies=tuple(_json_list(row.get("supported_potencies"))),
                    repetition_by_severity=_json_map(row.get("repetition_by_severity")),
                )
            )
        return out


# ----------------------------
# Cache
# ----------------------------

class ReferenceDataCache:
    """
    Holds the current snapshot. ``get()`` is lock-free once loaded;
    ``reload()`` builds a fresh snapshot under a lock and swaps the pointer.
    A failed reload leaves the previous snapshot in place.
    """

    def __init__(
        self,
        source: ReferenceDataSource,
        stop_words: Iterable[str] = (),
        repertory_source: Optional[str] = None,
    ) -> None:
        self._source = source
        self._stop_words = frozenset(stop_words)
        self._repertory_source = repertory_source
        self._lock = threading.Lock()
        self._snapshot: Optional[ReferenceSnapshot] = None
        self._version = 0

    @property
    def version(self) -> int:
        snap = self._snapshot
        return snap.version if snap is not None else 0

    def get(self) -> ReferenceSnapshot:
        snap = self._snapshot
        if snap is not None:
            return snap
        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._load()
            return self._snapshot

    def reload(self) -> ReferenceSnapshot:
        with self._lock:
            snap = self._load()
            self._snapshot = snap
            return snap

    def invalidate(self) -> ReferenceSnapshot:
        return self.reload()

    def _load(self) -> ReferenceSnapshot:
        try:
            rubrics = self._source.list_rubrics(self._repertory_source)
            remedies = self._source.list_remedies()
        except Exception as exc:
            _log.error("reference data load failed: %s", exc)
            raise ReferenceDataUnavailable(
                "reference data could not be loaded",
                {"reason": f"{type(exc).__name__}: {exc}"},
            ) from exc

        self._version += 1
        snap = ReferenceSnapshot.build(rubrics, remedies, self._stop_words, version=self._version)
        _log.info(
            "reference snapshot v%d rubrics=%d indexed=%d remedies=%d",
            snap.version,
            len(snap.rubrics),
            len(snap.index),
            len(snap.remedies),
        )
        return snap
