#!/usr/bin/env python3
"""
Import a MAG-style TSV dump into a property graph.

Usage:
    python ingest_dataset.py <dataset_dir> [output_dir] [schemas.json]

schemas.json defaults to <dataset_dir>/schemas.json.
"""

import logging
import sys
from pathlib import Path

# Add src to path so we can import magimport modules
sys.path.insert(0, str(Path(__file__).parent / "src"))

from magimport.core.config import setting
from magimport.graph.__main__ import run_import_on_path
from magimport.graph.api import ImportConfig
from magimport.graph.schema import SchemaConfigError


def main():
    if len(sys.argv) < 2:
        print("Usage: python ingest_dataset.py <dataset_dir> [output_dir] [schemas.json]")
        print("Example: python ingest_dataset.py sample_mag ./graph_output")
        sys.exit(1)

    logging.basicConfig(
        level=(setting("log.level", "INFO") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    dataset = Path(sys.argv[1])
    output_dir = Path(sys.argv[2]) if len(sys.argv) > 2 else Path("./graph_output")
    schema_path = Path(sys.argv[3]) if len(sys.argv) > 3 else dataset / "schemas.json"

    if not dataset.is_dir():
        print(f"Error: dataset directory does not exist: {dataset}")
        sys.exit(1)

    print(f"🔍 Importing dataset: {dataset}")
    print(f"📜 Schemas: {schema_path}")
    print(f"📁 Output directory: {output_dir}")
    print()

    try:
        result = run_import_on_path(
            dataset,
            schema_path=schema_path,
            out_dir=output_dir,
            cfg=ImportConfig(write_batch=1000),
            run_meta={"dataset": str(dataset)},
        )
    except SchemaConfigError as e:
        print(f"❌ Invalid schema definitions: {e}")
        sys.exit(2)

    summary = result["summary"]
    print("✅ Import completed!")
    print("\n📊 Results Summary:")
    print(f"  Tables: {summary['tables_total']}")
    for path in result["tables"]:
        print(f"    - {path}")
    print(f"  Records read: {summary['records_read']:,}")
    print(f"  Records skipped: {summary['records_skipped']:,}")
    print(f"  Vertices: {summary['vertex_rows']:,}")
    print(f"  Edges: {summary['edge_rows']:,}")
    print(f"  Multi-valued attributes folded: {summary['multi_attributes_folded']:,}")
    print(f"  Anomalies: {summary['anomalies']}")
    print(f"  Processing time: {summary['wall_ms']:,}ms")

    if summary["anomalies"] > 0:
        counters = result["receipt"].get("anomaly_counters", {})
        print("\n⚠️  Anomalies by kind:")
        for key in sorted(k for k in counters if k.startswith("kind:")):
            print(f"    {key[5:]}: {counters[key]}")

    print(f"\n🎉 Graph published to {result['out_dir']}")


if __name__ == "__main__":
    main()
