# src/magimport/graph/graph_store.py
from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

# Parquet / Arrow
try:
    import pyarrow as pa
    import pyarrow.parquet as pq
except Exception as e:  # pragma: no cover
    _PA_IMPORT_ERROR = e
else:
    _PA_IMPORT_ERROR = None

from .anomalies import Anomaly
from .elements import Edge, Vertex, props_to_json

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

# vertices/edges always get a first partition, anomalies only when present
_TABLES = ("vertices", "edges", "anomalies")
_ALWAYS_WRITTEN = frozenset({"vertices", "edges"})


class GraphStore:
    """
    Parquet sink for one import run.

    Rows are buffered per table and rolled into numbered partitions
    (`<table>/<prefix>_<table>_NNNNN.parquet`) under a staging directory.
    finalize() writes run_receipt.json, catalog.json and schema.sql next to
    them and swaps the staging directory into `out_dir`; a previous output
    is kept as `<out_dir>.bak`.

    Every partition is read back (row count from the footer) and hashed right
    after it is written. Write failures raise RuntimeError.
    """

    def __init__(
        self,
        out_dir: Path,
        *,
        zstd_level: int = 7,
        roll_rows: int = 2_000_000,
        max_bytes: Optional[int] = None,
        staging_suffix: str = ".staging",
        file_prefix: str = "graph",
        max_buffer_memory_mb: int = 128,
    ) -> None:
        if _PA_IMPORT_ERROR is not None:
            raise RuntimeError(f"pyarrow is required: {_PA_IMPORT_ERROR}")

        self.out_dir = Path(out_dir)
        self.zstd_level = int(zstd_level)
        self.max_bytes = max_bytes
        self.file_prefix = file_prefix

        self._staging = self.out_dir.with_name(self.out_dir.name + staging_suffix)
        shutil.rmtree(self._staging, ignore_errors=True)
        for name in _TABLES:
            (self._staging / name).mkdir(parents=True, exist_ok=True)

        schemas = {"vertices": _vertex_schema(), "edges": _edge_schema(), "anomalies": _anomaly_schema()}
        buffer_bytes = int(max_buffer_memory_mb) * 1024 * 1024
        self._bufs: Dict[str, _RowBuffer] = {
            name: _RowBuffer(schema, max(1000, int(roll_rows)), buffer_bytes) for name, schema in schemas.items()
        }

        self._partitions: Dict[str, List[str]] = {name: [] for name in _TABLES}
        self._rows: Dict[str, int] = {name: 0 for name in _TABLES}
        self._hashes: Dict[str, str] = {}
        self._bytes_written = 0

    # ----------------------------- append APIs --------------------------------

    def append(self, rows: Iterable[Tuple[str, object]]) -> None:
        """Append ("vertex", Vertex) / ("edge", Edge) tuples."""
        for kind, element in rows:
            if kind == "vertex":
                if not isinstance(element, Vertex):
                    raise TypeError(f"vertex row must be a Vertex, got {type(element).__name__}")
                self._add("vertices", _vertex_row(element))
            elif kind == "edge":
                if not isinstance(element, Edge):
                    raise TypeError(f"edge row must be an Edge, got {type(element).__name__}")
                self._add("edges", _edge_row(element))
            else:
                raise ValueError(f"unknown row kind: {kind!r}")

    def append_anomalies(self, anomalies: Iterable[Anomaly]) -> None:
        for a in anomalies:
            self._add("anomalies", _anomaly_row(a))

    @property
    def vertex_rows(self) -> int:
        return self._rows["vertices"]

    @property
    def edge_rows(self) -> int:
        return self._rows["edges"]

    @property
    def anomaly_rows(self) -> int:
        return self._rows["anomalies"]

    # ----------------------------- flush/finalize ------------------------------

    def flush(self) -> None:
        for name in _TABLES:
            self._write_partition(name)

    def finalize(self, *, receipt: Dict) -> None:
        self.flush()

        doc = {
            "schema_version": SCHEMA_VERSION,
            "vertex_rows": self._rows["vertices"],
            "edge_rows": self._rows["edges"],
            "anomaly_rows": self._rows["anomalies"],
            "bytes_written": self._bytes_written,
            "compression": {"algorithm": "zstd", "level": self.zstd_level},
            "files": {name: len(parts) for name, parts in self._partitions.items()},
            "created_at_epoch": int(time.time()),
            "created_at_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "transaction_log": [f"wrote_{name}:{Path(p).name}" for name in _TABLES for p in self._partitions[name]],
        }
        doc.update(receipt or {})
        doc["integrity"] = dict(sorted(self._hashes.items()))

        (self._staging / "run_receipt.json").write_text(json.dumps(doc, indent=2), encoding="utf-8")
        (self._staging / "catalog.json").write_text(json.dumps(self._catalog(), indent=2), encoding="utf-8")
        (self._staging / "schema.sql").write_text(self._duckdb_views(), encoding="utf-8")
        self._publish()
        logger.info(
            "published graph to %s (%d vertices, %d edges, %d anomalies)",
            self.out_dir,
            self._rows["vertices"],
            self._rows["edges"],
            self._rows["anomalies"],
        )

    # ----------------------------- internals ----------------------------------

    def _add(self, name: str, row: Dict) -> None:
        buf = self._bufs[name]
        buf.add(row)
        if buf.full:
            self._write_partition(name)

    def _write_partition(self, name: str) -> None:
        buf = self._bufs[name]
        if not buf and (name not in _ALWAYS_WRITTEN or self._partitions[name]):
            return
        rel = f"{name}/{self.file_prefix}_{name}_{len(self._partitions[name]):05}.parquet"
        path = self._staging / rel
        table = buf.to_table()
        try:
            pq.write_table(
                table,
                path,
                compression="zstd",
                compression_level=self.zstd_level,
                use_dictionary=True,
                write_statistics=True,
            )
            on_disk = pq.read_metadata(path).num_rows
            if on_disk != table.num_rows:
                raise RuntimeError(f"{rel}: footer says {on_disk} rows, wrote {table.num_rows}")
            size = path.stat().st_size
            if self.max_bytes is not None and self._bytes_written + size > self.max_bytes:
                raise RuntimeError(f"store budget max_bytes={self.max_bytes} exceeded by {rel}")
        except Exception as e:
            path.unlink(missing_ok=True)
            raise RuntimeError(f"writing {rel} failed: {e}") from e

        self._bytes_written += size
        self._hashes[rel] = _file_digest(path)
        self._partitions[name].append(rel)
        self._rows[name] += table.num_rows
        buf.clear()
        logger.debug("wrote %s (%d rows, %d bytes)", rel, table.num_rows, size)

    def _catalog(self) -> Dict:
        return {
            "schema_version": SCHEMA_VERSION,
            "tables": {
                name: {
                    "path": f"{name}/*.parquet",
                    "columns": {f.name: str(f.type) for f in self._bufs[name].schema},
                    # one rolling file series per table, no directory partitioning
                    "partitions": [],
                    "files": list(self._partitions[name]),
                    "row_count": self._rows[name],
                }
                for name in _TABLES
            },
        }

    def _duckdb_views(self) -> str:
        lines = ["-- DuckDB views over the published graph"]
        for name in _TABLES:
            if self._partitions[name]:
                lines.append(f"CREATE VIEW {name} AS SELECT * FROM read_parquet('{name}/*.parquet');")
        lines += [
            "-- Typical lookups",
            "-- SELECT label, count(*) FROM vertices GROUP BY label;",
            "-- SELECT * FROM edges WHERE src_id = ? OR dst_id = ?;",
        ]
        return "\n".join(lines)

    def _publish(self) -> None:
        backup = self.out_dir.with_name(self.out_dir.name + ".bak")
        if self.out_dir.exists():
            shutil.rmtree(backup, ignore_errors=True)
            os.replace(self.out_dir, backup)
        self.out_dir.parent.mkdir(parents=True, exist_ok=True)
        os.replace(self._staging, self.out_dir)


def _file_digest(path: Path) -> str:
    h = hashlib.blake2b(digest_size=16)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


# ============================== schemas & rows ================================

def _versioned(fields: List[pa.Field]) -> pa.Schema:
    return pa.schema(fields + [pa.field("schema_version", pa.string())], metadata={"version": SCHEMA_VERSION})


def _vertex_schema() -> pa.Schema:
    return _versioned(
        [
            pa.field("id", pa.string()),
            pa.field("label", pa.string()),
            pa.field("props_json", pa.string()),
        ]
    )


def _edge_schema() -> pa.Schema:
    return _versioned(
        [
            pa.field("id", pa.string()),
            pa.field("label", pa.string()),
            pa.field("src_id", pa.string()),
            pa.field("dst_id", pa.string()),
            pa.field("props_json", pa.string()),
        ]
    )


def _anomaly_schema() -> pa.Schema:
    return _versioned(
        [
            pa.field("kind", pa.string()),
            pa.field("severity", pa.string()),
            pa.field("schema", pa.string()),
            pa.field("detail", pa.string()),
            pa.field("source", pa.string()),
            pa.field("line", pa.int64()),
            pa.field("ts_ms", pa.int64()),
        ]
    )


def _vertex_row(v: Vertex) -> Dict:
    return {"id": v.id, "label": v.label, "props_json": props_to_json(v.properties)}


def _edge_row(e: Edge) -> Dict:
    return {
        "id": e.id,
        "label": e.label,
        "src_id": e.source,
        "dst_id": e.target,
        "props_json": props_to_json(e.properties),
    }


def _anomaly_row(a: Anomaly) -> Dict:
    return a.to_dict()


# ============================== buffer ========================================

class _RowBuffer:
    """
    Column-oriented buffer for one table. Full once it holds `roll_rows`
    rows or roughly `max_bytes` of cell data (string lengths, 8 per number).
    """

    __slots__ = ("schema", "_cols", "_rows", "_bytes", "_roll_rows", "_max_bytes")

    def __init__(self, schema: pa.Schema, roll_rows: int, max_bytes: int) -> None:
        self.schema = schema
        self._roll_rows = roll_rows
        self._max_bytes = max_bytes
        self._cols: Dict[str, List] = {}
        self.clear()

    def add(self, row: Dict) -> None:
        for name, column in self._cols.items():
            value = SCHEMA_VERSION if name == "schema_version" else row.get(name)
            column.append(value)
            self._bytes += len(value) if isinstance(value, str) else 8
        self._rows += 1

    @property
    def full(self) -> bool:
        return self._rows >= self._roll_rows or self._bytes >= self._max_bytes

    def to_table(self) -> pa.Table:
        return pa.table({f.name: pa.array(self._cols[f.name], type=f.type) for f in self.schema}, schema=self.schema)

    def clear(self) -> None:
        self._cols = {f.name: [] for f in self.schema}
        self._rows = 0
        self._bytes = 0

    def __bool__(self) -> bool:
        return self._rows > 0
