import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from magimport.graph.anomalies import AnomalyKind, AnomalySink, Severity
from magimport.graph.elements import Edge, Vertex
from magimport.graph.mapper import ElementMapper, MapperConfig, fold_value
from magimport.graph.records import MagRecord
from magimport.graph.results import ResultAccumulator
from magimport.graph.schema import Column, FieldRole, SchemaKind, SchemaRegistry, TableSchema

LENIENT = MapperConfig(strict_key_counts=False)
STRICT = MapperConfig(strict_key_counts=True)


def _schema(name, kind, *cols):
    return TableSchema(name=name, kind=kind, columns=tuple(Column(n, r) for n, r in cols))


INSTITUTIONS = _schema("Institutions", SchemaKind.NODE, ("id", FieldRole.ID), ("name", FieldRole.ATTRIBUTE))
AUTHORS = _schema(
    "Authors",
    SchemaKind.NODE,
    ("id", FieldRole.ID),
    ("name", FieldRole.ATTRIBUTE),
    ("Institutions.id", FieldRole.KEY),
)
PAPERS = _schema("Papers", SchemaKind.NODE, ("PaperID", FieldRole.ID), ("Title", FieldRole.ATTRIBUTE))
CITES = _schema(
    "PaperReferences",
    SchemaKind.EDGE,
    ("Papers.PaperID", FieldRole.KEY),
    ("Papers.PaperReferenceID", FieldRole.KEY),
    ("Weight", FieldRole.ATTRIBUTE),
)
CITES_3 = _schema(
    "OddReferences",
    SchemaKind.EDGE,
    ("Papers.A", FieldRole.KEY),
    ("Papers.B", FieldRole.KEY),
    ("Papers.C", FieldRole.KEY),
)
PAA = _schema(
    "PaperAuthorAffiliations",
    SchemaKind.TERNARY_EDGE,
    ("Papers.PaperID", FieldRole.KEY_PRIMARY),
    ("Authors.id", FieldRole.KEY),
    ("Institutions.id", FieldRole.KEY_SECONDARY),
    ("AuthorSequenceNumber", FieldRole.ATTRIBUTE),
    ("OriginalAffiliation", FieldRole.ATTRIBUTE_PRIMARY),
)
URLS = _schema(
    "PaperUrls",
    SchemaKind.MULTI_ATTRIBUTE,
    ("Papers.PaperID", FieldRole.KEY),
    ("SourceType", FieldRole.ATTRIBUTE),
    ("URL", FieldRole.ATTRIBUTE),
)


def _mapper(*schemas, config=LENIENT):
    reg = SchemaRegistry(schemas or [INSTITUTIONS, AUTHORS, PAPERS, CITES, CITES_3, PAA, URLS])
    return ElementMapper(reg, sink=AnomalySink(), config=config)


# ---- NODE ---------------------------------------------------------------------


def test_node_with_inline_foreign_key():
    m = _mapper()
    out = m.process(MagRecord.of(AUTHORS, "A1", "Ada", "I1"))

    assert out.vertices == (Vertex(id="A1", label="Authors", properties={"name": "Ada"}),)
    assert out.edges == (Edge(id="A1|I1", source="A1", target="I1", label="Authors|Institutions"),)
    assert len(m.sink) == 0


def test_node_with_unresolvable_key_still_emits_vertex():
    authors = _schema(
        "Authors",
        SchemaKind.NODE,
        ("id", FieldRole.ID),
        ("name", FieldRole.ATTRIBUTE),
        ("Institutions.id", FieldRole.KEY),
    )
    m = _mapper(authors)  # Institutions not registered
    out = m.process(MagRecord.of(authors, "A1", "Ada", "I1"))

    assert [v.id for v in out.vertices] == ["A1"]
    assert out.edges == ()
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.UNRESOLVABLE_FOREIGN_KEY
    assert anomaly.severity == Severity.WARN


def test_node_with_empty_foreign_key_has_no_edge():
    m = _mapper()
    out = m.process(MagRecord.of(AUTHORS, "A3", "Grace", ""))
    assert len(out.vertices) == 1
    assert out.edges == ()
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.NULL_REFERENCE
    assert anomaly.severity == Severity.INFO
    assert m.counters()["null_references"] == 1
    assert m.counters()["records_skipped"] == 0


def test_node_without_id_value_is_dropped():
    m = _mapper()
    out = m.process(MagRecord.of(AUTHORS, "", "Nobody", "I1", source="Authors.txt", line=7))

    assert out.empty
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.MISSING_IDENTIFIER
    assert anomaly.source == "Authors.txt"
    assert anomaly.line == 7
    assert "Nobody" in anomaly.detail
    assert m.counters()["records_skipped"] == 1


def test_node_empty_attribute_is_left_out():
    m = _mapper()
    [vertex] = m.process(MagRecord.of(PAPERS, "P3", "")).vertices
    assert vertex.properties == {}


# ---- EDGE ---------------------------------------------------------------------


def test_edge_source_target_and_attributes():
    m = _mapper()
    out = m.process(MagRecord.of(CITES, "P1", "P2", "0.5"))
    assert out.edges == (
        Edge(id="P1|P2", source="P1", target="P2", label="PaperReferences", properties={"Weight": "0.5"}),
    )
    assert out.vertices == ()


def test_edge_with_empty_end_is_skipped():
    m = _mapper()
    out = m.process(MagRecord.of(CITES, "P1", "", "0.5"))
    assert out.empty
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.NULL_REFERENCE
    assert m.counters()["records_skipped"] == 1


def test_edge_with_too_few_keys_is_skipped():
    half = _schema(
        "HalfReferences",
        SchemaKind.EDGE,
        ("Papers.PaperID", FieldRole.KEY),
        ("Journals.JournalID", FieldRole.KEY),
    )
    m = _mapper(PAPERS, half)  # Journals not registered
    assert m.process(MagRecord.of(half, "P1", "J1")).empty
    kinds = [a.kind for a in m.sink.items()]
    assert kinds == [AnomalyKind.UNRESOLVABLE_FOREIGN_KEY, AnomalyKind.MALFORMED_KEY_COUNT]
    assert m.sink.items()[1].severity == Severity.ERROR


def test_edge_with_too_many_keys_uses_first_two():
    m = _mapper()
    [edge] = m.process(MagRecord.of(CITES_3, "P1", "P2", "P3")).edges
    assert (edge.source, edge.target) == ("P1", "P2")
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.MALFORMED_KEY_COUNT
    assert anomaly.severity == Severity.WARN


def test_edge_with_too_many_keys_strict():
    m = _mapper(config=STRICT)
    assert m.process(MagRecord.of(CITES_3, "P1", "P2", "P3")).empty
    [anomaly] = m.sink.items()
    assert anomaly.severity == Severity.ERROR
    assert m.counters()["records_skipped"] == 1


# ---- TERNARY_EDGE -------------------------------------------------------------


def test_ternary_row_yields_two_edges():
    m = _mapper()
    out = m.process(MagRecord.of(PAA, "P1", "A1", "I1", "1", "Leipzig University"))

    first, second = out.edges
    assert first == Edge(
        id="P1|A1",
        source="P1",
        target="A1",
        label="PaperAuthorAffiliations_1",
        properties={"AuthorSequenceNumber": "1", "OriginalAffiliation": "Leipzig University"},
    )
    assert second == Edge(
        id="A1|I1",
        source="A1",
        target="I1",
        label="PaperAuthorAffiliations_2",
        properties={"AuthorSequenceNumber": "1", "Papers.PaperID": "P1"},
    )
    assert first.properties is not second.properties


def test_ternary_row_without_affiliation_keeps_primary_edge():
    m = _mapper()
    out = m.process(MagRecord.of(PAA, "P1", "A1", "", "1", "x"))

    [edge] = out.edges
    assert edge.label == "PaperAuthorAffiliations_1"
    assert (edge.source, edge.target) == ("P1", "A1")
    assert [a.kind for a in m.sink.items()] == [AnomalyKind.NULL_REFERENCE]
    assert m.counters()["records_skipped"] == 0


def test_ternary_row_without_paper_keeps_secondary_edge():
    m = _mapper()
    [edge] = m.process(MagRecord.of(PAA, "", "A1", "I1", "1", "x")).edges
    assert edge.label == "PaperAuthorAffiliations_2"
    assert edge.properties == {"AuthorSequenceNumber": "1"}


def test_ternary_row_without_shared_key_is_skipped():
    m = _mapper()
    assert m.process(MagRecord.of(PAA, "P1", "", "I1", "1", "x")).empty
    assert [a.kind for a in m.sink.items()] == [AnomalyKind.NULL_REFERENCE] * 2
    assert m.counters()["records_skipped"] == 1


def test_multi_attribute_with_empty_owner_key():
    m = _mapper()
    assert m.process(MagRecord.of(URLS, "", "1", "a")).empty
    assert [a.kind for a in m.sink.items()] == [AnomalyKind.NULL_REFERENCE]
    assert m.counters()["multi_parked"] == 0


# ---- MULTI_ATTRIBUTE ----------------------------------------------------------


def test_multi_attribute_values_fold_in_arrival_order():
    m = _mapper()
    [paper] = m.process(MagRecord.of(PAPERS, "P1", "Graphs")).vertices
    assert m.process(MagRecord.of(URLS, "P1", "1", "a")).empty
    m.process(MagRecord.of(URLS, "P1", "1", "b"))

    assert paper.properties == {"Title": "Graphs", "PaperUrls": ["a", "b"]}
    assert m.results.vertices()[0].properties["PaperUrls"] == ["a", "b"]
    assert m.counters()["multi_folded"] == 2


def test_multi_attribute_before_owner_is_parked_then_folded():
    m = _mapper()
    m.process(MagRecord.of(URLS, "P1", "1", "a"))
    m.process(MagRecord.of(URLS, "P1", "1", "b"))
    assert m.counters()["multi_pending"] == 2

    [paper] = m.process(MagRecord.of(PAPERS, "P1", "Graphs")).vertices
    assert paper.properties["PaperUrls"] == ["a", "b"]
    assert m.finish() == 0
    assert len(m.sink) == 0


def test_dangling_multi_attribute_reported_at_finish():
    m = _mapper()
    m.process(MagRecord.of(URLS, "P9", "1", "x", source="PaperUrls.txt", line=4))
    assert len(m.sink) == 0

    assert m.finish() == 1
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.DANGLING_MULTI_ATTRIBUTE_REFERENCE
    assert anomaly.line == 4
    assert "P9" in anomaly.detail
    assert m.finish() == 0
    assert m.finished


def test_dangling_after_finish_reported_immediately():
    m = _mapper()
    m.finish()
    m.process(MagRecord.of(URLS, "P9", "1", "x"))
    assert [a.kind for a in m.sink.items()] == [AnomalyKind.DANGLING_MULTI_ATTRIBUTE_REFERENCE]
    assert m.counters()["multi_dangling"] == 1


def test_multi_attribute_without_value():
    m = _mapper()
    m.process(MagRecord.of(PAPERS, "P1", "Graphs"))
    m.process(MagRecord.of(URLS, "P1", "1", ""))
    [anomaly] = m.sink.items()
    assert anomaly.kind == AnomalyKind.EMPTY_MULTI_ATTRIBUTE
    assert anomaly.severity == Severity.WARN
    assert "PaperUrls" not in m.results.vertices()[0].properties


def test_non_owner_vertices_do_not_collect_values():
    m = _mapper()
    m.process(MagRecord.of(INSTITUTIONS, "P1", "same id, other label"))
    m.process(MagRecord.of(URLS, "P1", "1", "a"))
    assert "PaperUrls" not in m.results.vertices()[0].properties
    assert m.counters()["multi_parked"] == 1


def test_custom_owner_and_field():
    notes = _schema(
        "InstitutionNotes",
        SchemaKind.MULTI_ATTRIBUTE,
        ("Institutions.id", FieldRole.KEY),
        ("Text", FieldRole.ATTRIBUTE),
    )
    cfg = MapperConfig(multi_attribute_owner="Institutions", multi_attribute_field="Text", strict_key_counts=False)
    m = _mapper(INSTITUTIONS, notes, config=cfg)
    m.process(MagRecord.of(INSTITUTIONS, "I1", "Uni"))
    m.process(MagRecord.of(notes, "I1", "hello"))
    assert m.results.vertices()[0].properties["InstitutionNotes"] == ["hello"]


@pytest.mark.parametrize(
    "before, after",
    [
        ({}, {"u": ["x"]}),
        ({"u": ["a"]}, {"u": ["a", "x"]}),
        ({"u": "a"}, {"u": ["a", "x"]}),
    ],
)
def test_fold_value(before, after):
    props = dict(before)
    fold_value(props, "u", "x")
    assert props == after


# ---- results & counters -------------------------------------------------------


def test_results_accumulate_in_emission_order():
    results = ResultAccumulator()
    reg = SchemaRegistry([INSTITUTIONS, AUTHORS, PAPERS, CITES])
    m = ElementMapper(reg, results=results, config=LENIENT)
    m.process(MagRecord.of(INSTITUTIONS, "I1", "Uni"))
    m.process(MagRecord.of(AUTHORS, "A1", "Ada", "I1"))
    m.process(MagRecord.of(CITES, "P1", "P2", ""))

    assert [v.id for v in results.vertices()] == ["I1", "A1"]
    assert [e.id for e in results.edges()] == ["A1|I1", "P1|P2"]
    assert len(results) == 4
    assert [kind for kind, _ in results.rows()] == ["vertex", "vertex", "edge", "edge"]

    c = m.counters()
    assert c["records_seen"] == 3
    assert c["vertices"] == 2
    assert c["edges"] == 2


def test_results_merge_and_extend():
    a, b = ResultAccumulator(), ResultAccumulator()
    a.add_vertex(Vertex(id="1", label="X"))
    b.extend([Vertex(id="2", label="X"), Edge(id="1|2", source="1", target="2", label="E")])
    a.merge(b)
    assert [v.id for v in a.vertices()] == ["1", "2"]
    assert a.edge_count == 1
    with pytest.raises(ValueError):
        a.merge(a)
    with pytest.raises(TypeError):
        a.extend(["not an element"])
