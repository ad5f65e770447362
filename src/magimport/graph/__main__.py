# src/magimport/graph/__main__.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .anomalies import AnomalySink
from .api import ImportConfig, ImportSummary, build_graph_for_tables
from .mapper import MapperConfig
from .reader import ReaderConfig, discover_tables
from .schema import load_schemas

logger = logging.getLogger(__name__)


def run_import_on_path(
    root: Path,
    *,
    schema_path: Path,
    out_dir: Path,
    cfg: Optional[ImportConfig] = None,
    mapper_cfg: Optional[MapperConfig] = None,
    reader_cfg: Optional[ReaderConfig] = None,
    run_meta: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Entry point for callers that want a plain dict back.

    - Loads schemas (raises SchemaConfigError on bad definitions).
    - Runs discovery → mapping → store finalize atomically in out_dir.
    - Returns a JSON-serializable dict with summary + receipt path.
    """
    root = Path(root)
    out_dir = Path(out_dir)
    registry = load_schemas(Path(schema_path))
    sink = AnomalySink()
    tables = discover_tables(root, registry, reader_cfg, sink=sink)

    summary: ImportSummary = build_graph_for_tables(
        tables,
        out_dir,
        registry,
        cfg=cfg,
        mapper_cfg=mapper_cfg,
        reader_cfg=reader_cfg,
        sink=sink,
        run_metadata=run_meta or {},
    )

    return {
        "summary": _summary_to_dict(summary),
        "out_dir": str(out_dir),
        "receipt_path": str(out_dir / "run_receipt.json"),
        "receipt": load_receipt(out_dir),
        "tables": [t.path for t in tables],
    }


def load_receipt(out_dir: Path) -> Dict[str, Any]:
    """
    Re-read the receipt of a published import; {} when absent or unreadable.
    """
    receipt_path = Path(out_dir) / "run_receipt.json"
    if not receipt_path.exists():
        return {}
    try:
        return json.loads(receipt_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("unreadable receipt %s: %s", receipt_path, e)
        return {}


# ----------------------------- helpers ----------------------------------------

def _summary_to_dict(s: ImportSummary) -> Dict[str, Any]:
    return {
        "tables_total": s.tables_total,
        "records_read": s.records_read,
        "records_skipped": s.records_skipped,
        "vertex_rows": s.vertex_rows,
        "edge_rows": s.edge_rows,
        "multi_attributes_folded": s.multi_attributes_folded,
        "anomalies": s.anomalies,
        "wall_ms": s.wall_ms,
    }
