# src/magimport/graph/iterators.py
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

# Depend on DuckDB for fast columnar scans
try:
    import duckdb
except Exception as e:  # pragma: no cover
    _DUCKDB_IMPORT_ERROR = e
else:
    _DUCKDB_IMPORT_ERROR = None


# ---------------------------- typed result rows --------------------------------

@dataclass(frozen=True)
class VertexRecord:
    id: str
    label: str
    props: Dict


@dataclass(frozen=True)
class EdgeRecord:
    id: str
    label: str
    src_id: str
    dst_id: str
    props: Dict


@dataclass(frozen=True)
class AnomalyRecord:
    kind: str
    severity: str
    schema: str
    detail: str
    source: str
    line: int
    ts_ms: int


# ---------------------------- helpers ------------------------------------------

def _require_duckdb():
    if _DUCKDB_IMPORT_ERROR is not None:
        raise RuntimeError(
            "duckdb is required for graph iterators. "
            f"Import failed with: {_DUCKDB_IMPORT_ERROR}"
        )


def _as_json(maybe: Optional[str]) -> Dict:
    if not maybe:
        return {}
    try:
        return json.loads(maybe)
    except json.JSONDecodeError:
        return {}


def _in_clause(column: str, values: Iterable[str], where: List[str], params: List[object]) -> None:
    vs = list(values)
    if not vs:
        return
    where.append(f"{column} IN ({','.join(['?'] * len(vs))})")
    params.extend(vs)


def _where_sql(where: List[str]) -> str:
    return ("WHERE " + " AND ".join(where)) if where else ""


# ---------------------------- public API ---------------------------------------

class GraphReader:
    """
    Read-side API over a published graph directory.

    - Uses DuckDB to stream rows in stable order without loading entire tables.
    - Path should be the published dir (containing vertices/, edges/, anomalies/).
    """

    def __init__(self, graph_dir: Path) -> None:
        _require_duckdb()
        self.graph_dir = Path(graph_dir)
        if not (self.graph_dir / "vertices").exists() or not (self.graph_dir / "edges").exists():
            raise FileNotFoundError(f"graph directory is missing vertices/ or edges/: {graph_dir}")
        self.con = duckdb.connect(database=":memory:")
        self.vertices_glob = (self.graph_dir / "vertices" / "*.parquet").as_posix()
        self.edges_glob = (self.graph_dir / "edges" / "*.parquet").as_posix()
        self.anoms_glob = (self.graph_dir / "anomalies" / "*.parquet").as_posix()

    def __enter__(self) -> "GraphReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---------------- core scans ----------------

    def iter_vertices(
        self,
        *,
        labels: Optional[Iterable[str]] = None,
        ids: Optional[Iterable[str]] = None,
        batch_size: int = 50_000,
    ) -> Iterator[VertexRecord]:
        """
        Stream vertices filtered by label/id in deterministic order (label, id ASC).
        """
        where: List[str] = []
        params: List[object] = []
        _in_clause("label", labels or (), where, params)
        _in_clause("id", ids or (), where, params)
        sql = f"""
            SELECT id, label, props_json
            FROM read_parquet('{self.vertices_glob}')
            {_where_sql(where)}
            ORDER BY label ASC, id ASC
        """
        for r in self._stream(sql, params, batch_size):
            yield VertexRecord(id=r["id"], label=r["label"], props=_as_json(r["props_json"]))

    def iter_edges(
        self,
        *,
        labels: Optional[Iterable[str]] = None,
        src_id: Optional[str] = None,
        dst_id: Optional[str] = None,
        batch_size: int = 50_000,
    ) -> Iterator[EdgeRecord]:
        """
        Stream edges filtered by label/src/dst in deterministic order (label, id ASC).
        """
        where: List[str] = []
        params: List[object] = []
        _in_clause("label", labels or (), where, params)
        if src_id:
            where.append("src_id = ?")
            params.append(src_id)
        if dst_id:
            where.append("dst_id = ?")
            params.append(dst_id)
        sql = f"""
            SELECT id, label, src_id, dst_id, props_json
            FROM read_parquet('{self.edges_glob}')
            {_where_sql(where)}
            ORDER BY label ASC, id ASC
        """
        for r in self._stream(sql, params, batch_size):
            yield EdgeRecord(
                id=r["id"],
                label=r["label"],
                src_id=r["src_id"],
                dst_id=r["dst_id"],
                props=_as_json(r["props_json"]),
            )

    def iter_anomalies(
        self,
        *,
        kinds: Optional[Iterable[str]] = None,
        severities: Optional[Iterable[str]] = None,
        batch_size: int = 50_000,
    ) -> Iterator[AnomalyRecord]:
        # Anomaly partitions are only written when there was something to report
        if not any((self.graph_dir / "anomalies").glob("*.parquet")):
            return
        where: List[str] = []
        params: List[object] = []
        _in_clause("kind", kinds or (), where, params)
        _in_clause("severity", severities or (), where, params)
        sql = f"""
            SELECT kind, severity, "schema", detail, source, line, ts_ms
            FROM read_parquet('{self.anoms_glob}')
            {_where_sql(where)}
            ORDER BY ts_ms ASC, source ASC, line ASC
        """
        for r in self._stream(sql, params, batch_size):
            yield AnomalyRecord(
                kind=r["kind"],
                severity=r["severity"],
                schema=r["schema"] or "",
                detail=r["detail"] or "",
                source=r["source"] or "",
                line=int(r["line"] or 0),
                ts_ms=int(r["ts_ms"] or 0),
            )

    # -------------- higher-level convenience scans ----------------

    def get_vertex(self, vertex_id: str) -> Optional[VertexRecord]:
        for v in self.iter_vertices(ids=[vertex_id]):
            return v
        return None

    def iter_incident_edges(self, vertex_id: str, *, batch_size: int = 50_000) -> Iterator[Tuple[str, EdgeRecord]]:
        """("out"|"in", edge) for every edge touching `vertex_id`."""
        for e in self.iter_edges(src_id=vertex_id, batch_size=batch_size):
            yield ("out", e)
        for e in self.iter_edges(dst_id=vertex_id, batch_size=batch_size):
            yield ("in", e)

    def count_by_label(self) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {"vertices": {}, "edges": {}}
        for table, glob in (("vertices", self.vertices_glob), ("edges", self.edges_glob)):
            rows = self.con.execute(
                f"SELECT label, count(*) FROM read_parquet('{glob}') GROUP BY label ORDER BY label"
            ).fetchall()
            out[table] = {label: int(n) for label, n in rows}
        return out

    # ---------------- low-level streaming primitives ---------------------------

    def _stream(self, sql: str, params: List[object], batch_size: int) -> Iterator[Dict]:
        reader = self.con.execute(sql, params).fetch_record_batch(batch_size)
        for batch in reader:
            yield from batch.to_pylist()

    def close(self) -> None:
        self.con.close()
