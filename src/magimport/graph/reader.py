# src/magimport/graph/reader.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .records import MagRecord
from .schema import KIND_ORDER, SchemaRegistry, TableSchema

logger = logging.getLogger(__name__)

# ---- Reader data model --------------------------------------------------------


@dataclass(frozen=True)
class ReaderConfig:
    delimiter: str = "\t"
    encoding: str = "utf-8"
    # Table file for schema S is S<ext>, first match wins
    extensions: Tuple[str, ...] = (".txt", ".tsv")
    max_line_bytes: int = 16 * 1024 * 1024
    skip_blank_lines: bool = True


@dataclass(frozen=True)
class TableFile:
    path: str        # posix path relative to the dataset root
    real_path: str   # resolved absolute path
    schema: TableSchema
    size_bytes: int


# ---- Discovery ----------------------------------------------------------------


def _table_sort_key(t: TableFile) -> Tuple[int, str]:
    return (KIND_ORDER[t.schema.kind], t.schema.name)


def discover_tables(
    root: Path,
    registry: SchemaRegistry,
    cfg: Optional[ReaderConfig] = None,
    sink: Optional[AnomalySink] = None,
) -> List[TableFile]:
    """
    One table file per registered schema under `root` (non-recursive).

    Ordered NODE tables first, then EDGE, TERNARY_EDGE, MULTI_ATTRIBUTE, so
    owner vertices exist before the rows that reference them.
    """
    cfg = cfg or ReaderConfig()
    sink = sink if sink is not None else AnomalySink()
    root = Path(root)

    by_stem: Dict[str, Path] = {}
    for p in sorted(root.iterdir()):
        if not p.is_file():
            continue
        if p.suffix.lower() not in cfg.extensions or p.stem not in registry:
            sink.emit(Anomaly(kind=AnomalyKind.SKIPPED, severity=Severity.INFO, detail="not a table file", source=p.name))
            continue
        if p.stem in by_stem:
            # Prefer the earlier extension in cfg.extensions
            prev = by_stem[p.stem]
            if cfg.extensions.index(prev.suffix.lower()) <= cfg.extensions.index(p.suffix.lower()):
                sink.emit(Anomaly(kind=AnomalyKind.SKIPPED, severity=Severity.INFO, detail=f"shadowed by {prev.name}", source=p.name))
                continue
            sink.emit(Anomaly(kind=AnomalyKind.SKIPPED, severity=Severity.INFO, detail=f"shadowed by {p.name}", source=prev.name))
        by_stem[p.stem] = p

    tables: List[TableFile] = []
    for schema in registry:
        p = by_stem.get(schema.name)
        if p is None:
            sink.emit(Anomaly(kind=AnomalyKind.TABLE_MISSING, severity=Severity.INFO, schema=schema.name, detail=f"no table file under {root}"))
            continue
        try:
            size = p.stat().st_size
        except OSError as e:
            sink.emit(Anomaly(kind=AnomalyKind.IO_ERROR, severity=Severity.ERROR, schema=schema.name, detail=f"stat failed: {e}", source=p.name))
            continue
        tables.append(TableFile(path=p.relative_to(root).as_posix(), real_path=str(p.resolve()), schema=schema, size_bytes=size))

    tables.sort(key=_table_sort_key)
    logger.debug("discovered %d table files under %s", len(tables), root)
    return tables


# ---- Parsing ------------------------------------------------------------------


def _strip_eol(raw: bytes) -> bytes:
    if raw.endswith(b"\r\n"):
        return raw[:-2]
    if raw.endswith(b"\n") or raw.endswith(b"\r"):
        return raw[:-1]
    return raw


def iter_records(
    table: TableFile,
    cfg: Optional[ReaderConfig] = None,
    sink: Optional[AnomalySink] = None,
) -> Iterator[MagRecord]:
    """
    Stream the rows of one table file as records.

    Rows with the wrong number of fields, or longer than max_line_bytes, are
    reported and skipped. An IO failure ends the table after reporting it.
    """
    cfg = cfg or ReaderConfig()
    sink = sink if sink is not None else AnomalySink()
    schema = table.schema
    width = len(schema.columns)

    try:
        fh = open(table.real_path, "rb")
    except OSError as e:
        sink.emit(Anomaly(kind=AnomalyKind.IO_ERROR, severity=Severity.ERROR, schema=schema.name, detail=f"open failed: {e}", source=table.path))
        return

    with fh:
        line_no = 0
        while True:
            try:
                raw = fh.readline(cfg.max_line_bytes + 1)
            except OSError as e:
                sink.emit(Anomaly(kind=AnomalyKind.IO_ERROR, severity=Severity.ERROR, schema=schema.name, detail=f"read failed: {e}", source=table.path, line=line_no))
                return
            if not raw:
                break
            line_no += 1

            if len(raw) > cfg.max_line_bytes:
                sink.emit(Anomaly(kind=AnomalyKind.MALFORMED_ROW, severity=Severity.ERROR, schema=schema.name, detail=f"line exceeds {cfg.max_line_bytes} bytes", source=table.path, line=line_no))
                # Consume the remainder of the over-long line
                while raw and not raw.endswith(b"\n"):
                    raw = fh.readline(cfg.max_line_bytes + 1)
                continue

            body = _strip_eol(raw)
            if not body and cfg.skip_blank_lines:
                continue

            try:
                text = body.decode(cfg.encoding)
            except UnicodeDecodeError as e:
                sink.emit(Anomaly(kind=AnomalyKind.ENCODING_ERROR, severity=Severity.WARN, schema=schema.name, detail=f"{cfg.encoding} decode failed at byte {e.start}", source=table.path, line=line_no))
                text = body.decode(cfg.encoding, errors="replace")

            fields = text.split(cfg.delimiter)
            if len(fields) != width:
                sink.emit(Anomaly(kind=AnomalyKind.MALFORMED_ROW, severity=Severity.ERROR, schema=schema.name, detail=f"expected {width} fields, got {len(fields)}", source=table.path, line=line_no))
                continue

            yield MagRecord(schema=schema, values=tuple(fields), source=table.path, line=line_no)
