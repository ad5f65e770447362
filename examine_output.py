#!/usr/bin/env python3
"""
Script to examine a published graph directory.
"""

import json
import sys
from pathlib import Path

import pandas as pd

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from magimport.graph.iterators import GraphReader


def _read_table(directory: Path) -> pd.DataFrame:
    files = sorted(directory.glob("*.parquet"))
    if not files:
        return pd.DataFrame()
    return pd.concat([pd.read_parquet(f) for f in files], ignore_index=True)


def examine_graph_output(output_dir: str):
    """Examine the graph output data."""
    output_path = Path(output_dir)

    print(f"🔍 Examining graph output in: {output_path}")
    print("=" * 60)

    receipt_path = output_path / "run_receipt.json"
    if receipt_path.exists():
        receipt = json.loads(receipt_path.read_text(encoding="utf-8"))
        print("📊 Summary:")
        print(f"  Vertices: {receipt['vertex_rows']:,}")
        print(f"  Edges: {receipt['edge_rows']:,}")
        print(f"  Anomalies: {receipt['anomaly_rows']}")
        print(f"  Total size: {receipt['bytes_written']:,} bytes")
        print()

    vertices_df = _read_table(output_path / "vertices")
    print(f"📁 Vertices: {len(vertices_df)} rows")
    for i, row in vertices_df.head(5).iterrows():
        print(f"  {i+1}. {row['label']} {row['id']} {row['props_json']}")
    if len(vertices_df) > 5:
        print(f"  ... and {len(vertices_df) - 5} more")
    print()

    edges_df = _read_table(output_path / "edges")
    print(f"🔗 Edges: {len(edges_df)} rows")
    for i, row in edges_df.head(5).iterrows():
        print(f"  {i+1}. {row['label']}: {row['src_id']} -> {row['dst_id']}")
    if len(edges_df) > 5:
        print(f"  ... and {len(edges_df) - 5} more")
    print()

    anomalies_df = _read_table(output_path / "anomalies")
    if len(anomalies_df) > 0:
        print("⚠️  Anomalies by kind:")
        for kind, count in anomalies_df["kind"].value_counts().items():
            print(f"    {kind}: {count}")
        print()

    print("🔍 Using GraphReader API:")
    with GraphReader(output_path) as reader:
        counts = reader.count_by_label()
        print("  Vertex labels:")
        for label, n in counts["vertices"].items():
            print(f"    {label}: {n}")
        print("  Edge labels:")
        for label, n in counts["edges"].items():
            print(f"    {label}: {n}")

    print("\n✅ Output examination complete!")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python examine_output.py <output_dir>")
        print("Example: python examine_output.py graph_output")
        sys.exit(1)

    examine_graph_output(sys.argv[1])
