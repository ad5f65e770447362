import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

pytest.importorskip("pyarrow")
pytest.importorskip("duckdb")

from magimport.graph.__main__ import run_import_on_path
from magimport.graph.iterators import GraphReader
from magimport.graph.mapper import MapperConfig

SAMPLE = Path(__file__).resolve().parents[1] / "sample_mag"


@pytest.fixture
def imported(tmp_path):
    out = tmp_path / "graph"
    result = run_import_on_path(
        SAMPLE,
        schema_path=SAMPLE / "schemas.json",
        out_dir=out,
        mapper_cfg=MapperConfig(strict_key_counts=False),
        run_meta={"dataset": "sample_mag"},
    )
    return out, result


def test_summary_counts(imported):
    _, result = imported
    s = result["summary"]
    assert s["tables_total"] == 7
    assert s["records_read"] == 20
    assert s["vertex_rows"] == 10
    assert s["edge_rows"] == 13
    assert s["multi_attributes_folded"] == 3
    assert s["records_skipped"] == 1
    assert s["anomalies"] == 6

    assert result["tables"][:4] == ["Affiliations.txt", "Authors.txt", "Journals.txt", "Papers.txt"]
    assert result["tables"][-1] == "PaperUrls.txt"

    receipt = result["receipt"]
    assert receipt["run_meta"] == {"dataset": "sample_mag"}
    assert receipt["mapper"]["multi_dangling"] == 1
    assert receipt["anomaly_counters"]["kind:MALFORMED_ROW"] == 1
    assert receipt["anomaly_counters"]["kind:NULL_REFERENCE"] == 3
    assert receipt["mapper"]["null_references"] == 3


def test_published_graph_contents(imported):
    out, _ = imported
    with GraphReader(out) as reader:
        p1 = reader.get_vertex("P1")
        assert p1.label == "Papers"
        assert p1.props == {
            "OriginalTitle": "Graph Import at Scale",
            "Year": "2017",
            "PaperUrls": ["http://example.org/p1.pdf", "http://mirror.example.org/p1"],
        }
        assert reader.get_vertex("P3").props == {"OriginalTitle": "Untitled Draft"}

        counts = reader.count_by_label()
        assert counts["vertices"] == {"Affiliations": 2, "Authors": 3, "Journals": 2, "Papers": 3}
        assert counts["edges"] == {
            "Authors|Affiliations": 2,
            "PaperAuthorAffiliations_1": 4,
            "PaperAuthorAffiliations_2": 3,
            "PaperReferences": 2,
            "Papers|Journals": 2,
        }

        [first] = reader.iter_edges(labels=["PaperAuthorAffiliations_1"], src_id="P1", dst_id="A1")
        assert first.props == {"AuthorSequenceNumber": "1", "OriginalAffiliation": "Leipzig University"}
        [second] = reader.iter_edges(labels=["PaperAuthorAffiliations_2"], src_id="A1")
        assert second.id == "A1|F1"
        assert second.props == {"AuthorSequenceNumber": "1", "Papers.PaperID": "P1"}

        # no affiliation on this row: only the paper -> author edge
        assert [e.label for _, e in reader.iter_incident_edges("A3") if e.label.startswith("PaperAuthor")] == [
            "PaperAuthorAffiliations_1"
        ]

        kinds = sorted(a.kind for a in reader.iter_anomalies())
        assert kinds == [
            "DANGLING_MULTI_ATTRIBUTE_REFERENCE",
            "MALFORMED_ROW",
            "NULL_REFERENCE",
            "NULL_REFERENCE",
            "NULL_REFERENCE",
            "SKIPPED",
        ]
        [dangling] = reader.iter_anomalies(kinds=["DANGLING_MULTI_ATTRIBUTE_REFERENCE"])
        assert dangling.schema == "PaperUrls"
        assert dangling.line == 4
