# src/magimport/graph/mapper.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..core.config import feature_enabled
from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .attributes import AttributeVariant, project_attributes
from .elements import EDGE_ID_SEPARATOR, Edge, PropertyMap, Vertex, edge_id
from .keys import ForeignKeyRef, KeyVariant, resolve_keys
from .records import MagRecord
from .results import ResultAccumulator
from .schema import SchemaKind, SchemaRegistry

logger = logging.getLogger(__name__)


# ==============================================================================
# Config & results
# ==============================================================================

@dataclass(frozen=True)
class MapperConfig:
    # Vertices of this schema collect multi-valued attributes
    multi_attribute_owner: str = "Papers"
    # Attribute column of MULTI_ATTRIBUTE rows holding the value to collect
    multi_attribute_field: str = "URL"
    edge_id_separator: str = EDGE_ID_SEPARATOR
    # Surplus keys drop the record instead of using the first ones
    strict_key_counts: bool = field(
        default_factory=lambda: feature_enabled("feature.mapper.strict_key_counts")
    )


@dataclass(frozen=True)
class MappedElements:
    vertices: Tuple[Vertex, ...] = ()
    edges: Tuple[Edge, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.vertices and not self.edges


_NOTHING = MappedElements()


@dataclass(frozen=True)
class _ParkedValue:
    attribute: str
    value: str
    record: MagRecord


# ==============================================================================
# Cross-record accumulator
# ==============================================================================

class MultiAttributeAccumulator:
    """
    Owner vertex id -> the vertex's property map (the same dict object the
    emitted Vertex holds), plus values that arrived before their owner.

    Grows monotonically for the length of a run.
    """

    __slots__ = ("_props", "_pending")

    def __init__(self) -> None:
        self._props: Dict[str, PropertyMap] = {}
        self._pending: Dict[str, List[_ParkedValue]] = {}

    def register(self, vertex_id: str, props: PropertyMap) -> List[_ParkedValue]:
        """Track `props` for `vertex_id`; returns values parked for it, in arrival order."""
        self._props[vertex_id] = props
        return self._pending.pop(vertex_id, [])

    def get(self, vertex_id: str) -> Optional[PropertyMap]:
        return self._props.get(vertex_id)

    def park(self, vertex_id: str, value: _ParkedValue) -> None:
        self._pending.setdefault(vertex_id, []).append(value)

    def drain_pending(self) -> Dict[str, List[_ParkedValue]]:
        out = self._pending
        self._pending = {}
        return out

    @property
    def pending_count(self) -> int:
        return sum(len(v) for v in self._pending.values())

    def __contains__(self, vertex_id: object) -> bool:
        return vertex_id in self._props

    def __len__(self) -> int:
        return len(self._props)


def fold_value(props: PropertyMap, attribute: str, value: str) -> None:
    """Append `value` to the list stored under `attribute`, in place."""
    current = props.get(attribute)
    if isinstance(current, list):
        current.append(value)
    elif current is None:
        props[attribute] = [value]
    else:
        props[attribute] = [current, value]


# ==============================================================================
# Mapper
# ==============================================================================

class ElementMapper:
    """
    Maps one record at a time to graph elements according to its schema kind.

    NODE            -> one vertex, plus an edge per resolvable inline foreign key
    EDGE            -> one edge: first key is the source, second the target
    TERNARY_EDGE    -> two edges (<schema>_1 / <schema>_2) from the same row
    MULTI_ATTRIBUTE -> a value appended to a list property of an owner vertex

    Multi-attribute values whose owner vertex has not been mapped yet are
    parked and folded in when it arrives. finish() closes the run and reports
    whatever is still parked as dangling.

    An empty foreign-key value is a NULL reference: the edge (or value) that
    would need it is left out and reported at INFO, the rest of the record is
    still mapped.

    Every emitted element is also appended to `results`. Per-record problems
    go to `sink` as anomalies; nothing raises for bad records.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        *,
        results: Optional[ResultAccumulator] = None,
        sink: Optional[AnomalySink] = None,
        config: Optional[MapperConfig] = None,
    ) -> None:
        self.registry = registry
        self.results = results if results is not None else ResultAccumulator()
        self.sink = sink if sink is not None else AnomalySink()
        self.cfg = config or MapperConfig()
        self.multi_attributes = MultiAttributeAccumulator()
        self._finished = False
        self._counts: Dict[str, int] = {
            "records_seen": 0,
            "records_skipped": 0,
            "vertices": 0,
            "edges": 0,
            "multi_folded": 0,
            "multi_parked": 0,
            "multi_dangling": 0,
            "null_references": 0,
        }
        self._handlers: Dict[SchemaKind, Callable[[MagRecord], MappedElements]] = {
            SchemaKind.NODE: self._map_node,
            SchemaKind.EDGE: self._map_edge,
            SchemaKind.TERNARY_EDGE: self._map_ternary_edge,
            SchemaKind.MULTI_ATTRIBUTE: self._map_multi_attribute,
        }

    # ----------------------------- public API ---------------------------------

    def process(self, record: MagRecord) -> MappedElements:
        self._counts["records_seen"] += 1
        out = self._handlers[record.schema.kind](record)
        for v in out.vertices:
            self.results.add_vertex(v)
        for e in out.edges:
            self.results.add_edge(e)
        self._counts["vertices"] += len(out.vertices)
        self._counts["edges"] += len(out.edges)
        return out

    def finish(self) -> int:
        """
        End the run. Parked multi-attribute values are reported as dangling
        and dropped. Returns the number reported by this call.
        """
        if self._finished:
            return 0
        self._finished = True
        dangling = 0
        for vertex_id, parked in self.multi_attributes.drain_pending().items():
            for p in parked:
                self._report_dangling(p.record, vertex_id)
                dangling += 1
        return dangling

    @property
    def finished(self) -> bool:
        return self._finished

    def counters(self) -> Dict[str, int]:
        out = dict(self._counts)
        out["multi_pending"] = self.multi_attributes.pending_count
        return out

    # ----------------------------- per kind -----------------------------------

    def _map_node(self, record: MagRecord) -> MappedElements:
        schema = record.schema
        idx = schema.id_index()
        vertex_id = record.field(idx) if idx is not None else ""
        if not vertex_id:
            self._report(record, AnomalyKind.MISSING_IDENTIFIER, Severity.ERROR, "no id present")
            self._counts["records_skipped"] += 1
            return _NOTHING

        props = project_attributes(record)
        if schema.name == self.cfg.multi_attribute_owner:
            for p in self.multi_attributes.register(vertex_id, props):
                self._fold(props, p.attribute, p.value)

        vertex = Vertex(id=vertex_id, label=schema.name, properties=props)
        logger.debug("added vertex %s", vertex)

        sep = self.cfg.edge_id_separator
        edges: List[Edge] = []
        for k in resolve_keys(record, self.registry, sink=self.sink):
            label = f"{schema.name}{sep}{k.target_schema}"
            if k.is_null:
                self._report_null(record, k, f"{label} edge")
                continue
            edges.append(Edge(id=edge_id(vertex_id, k.value, sep), source=vertex_id, target=k.value, label=label))
        return MappedElements(vertices=(vertex,), edges=tuple(edges))

    def _map_edge(self, record: MagRecord) -> MappedElements:
        props = project_attributes(record)
        keys = self._expect_keys(record, resolve_keys(record, self.registry, sink=self.sink), 2, "edge")
        if keys is None or not self._ends_present(record, keys, f"{record.schema.name} edge"):
            self._counts["records_skipped"] += 1
            return _NOTHING
        edge = self._edge(keys[0].value, keys[1].value, record.schema.name, props)
        logger.debug("added edge %s", edge)
        return MappedElements(edges=(edge,))

    def _map_ternary_edge(self, record: MagRecord) -> MappedElements:
        # Each edge of the row is emitted or skipped on its own
        name = record.schema.name
        edges: List[Edge] = []
        for key_variant, attr_variant, label, what in (
            (KeyVariant.PRIMARY, AttributeVariant.PRIMARY, f"{name}_1", "ternary edge (primary)"),
            (KeyVariant.SECONDARY, AttributeVariant.SECONDARY, f"{name}_2", "ternary edge (secondary)"),
        ):
            keys = self._expect_keys(
                record,
                resolve_keys(record, self.registry, variant=key_variant, sink=self.sink),
                2,
                what,
            )
            if keys is None or not self._ends_present(record, keys, f"{label} edge"):
                continue
            props = project_attributes(record, variant=attr_variant)
            edges.append(self._edge(keys[0].value, keys[1].value, label, props))

        if not edges:
            self._counts["records_skipped"] += 1
            return _NOTHING
        logger.debug("added ternary edges %s", edges)
        return MappedElements(edges=tuple(edges))

    def _map_multi_attribute(self, record: MagRecord) -> MappedElements:
        keys = self._expect_keys(record, resolve_keys(record, self.registry, sink=self.sink), 1, "multi-attribute")
        if keys is None:
            self._counts["records_skipped"] += 1
            return _NOTHING
        attribute = record.schema.name
        if keys[0].is_null:
            self._report_null(record, keys[0], f"{attribute} value")
            self._counts["records_skipped"] += 1
            return _NOTHING
        owner_id = keys[0].value

        value = project_attributes(record).get(self.cfg.multi_attribute_field)
        if not isinstance(value, str) or value == "":
            self._report(
                record,
                AnomalyKind.EMPTY_MULTI_ATTRIBUTE,
                Severity.WARN,
                f"no {self.cfg.multi_attribute_field!r} value for {owner_id}",
            )
            self._counts["records_skipped"] += 1
            return _NOTHING

        props = self.multi_attributes.get(owner_id)
        if props is not None:
            self._fold(props, attribute, value)
        elif self._finished:
            self._report_dangling(record, owner_id)
        else:
            self.multi_attributes.park(owner_id, _ParkedValue(attribute=attribute, value=value, record=record))
            self._counts["multi_parked"] += 1
            logger.debug("parked %s value for %s until its vertex is mapped", attribute, owner_id)
        return _NOTHING

    # ----------------------------- helpers ------------------------------------

    def _edge(self, source: str, target: str, label: str, props: PropertyMap) -> Edge:
        return Edge(
            id=edge_id(source, target, self.cfg.edge_id_separator),
            source=source,
            target=target,
            label=label,
            properties=props,
        )

    def _fold(self, props: PropertyMap, attribute: str, value: str) -> None:
        fold_value(props, attribute, value)
        self._counts["multi_folded"] += 1
        logger.debug("added multi attribute %s: %s", attribute, props.get(attribute))

    def _ends_present(self, record: MagRecord, keys: List[ForeignKeyRef], what: str) -> bool:
        """False (after reporting each empty end) when an edge would point at nothing."""
        present = True
        for k in keys:
            if k.is_null:
                self._report_null(record, k, what)
                present = False
        return present

    def _expect_keys(
        self,
        record: MagRecord,
        keys: List[ForeignKeyRef],
        expected: int,
        what: str,
    ) -> Optional[List[ForeignKeyRef]]:
        """
        Exactly `expected` keys, or None when the record has to be skipped.
        Too few always skips; too many uses the first ones unless strict.
        """
        if len(keys) < expected:
            self._report(
                record,
                AnomalyKind.MALFORMED_KEY_COUNT,
                Severity.ERROR,
                f"malformed {what}: not enough keys ({len(keys)} of {expected})",
            )
            return None
        if len(keys) > expected:
            strict = self.cfg.strict_key_counts
            self._report(
                record,
                AnomalyKind.MALFORMED_KEY_COUNT,
                Severity.ERROR if strict else Severity.WARN,
                f"malformed {what}: too many keys ({len(keys)} for {expected})",
            )
            if strict:
                return None
        return keys[:expected]

    def _report_null(self, record: MagRecord, ref: ForeignKeyRef, what: str) -> None:
        self._report(
            record,
            AnomalyKind.NULL_REFERENCE,
            Severity.INFO,
            f"empty {ref.target_schema} reference, no {what}",
        )
        self._counts["null_references"] += 1

    def _report_dangling(self, record: MagRecord, owner_id: str) -> None:
        self._report(
            record,
            AnomalyKind.DANGLING_MULTI_ATTRIBUTE_REFERENCE,
            Severity.ERROR,
            f"no {self.cfg.multi_attribute_owner} vertex {owner_id!r} for {record.schema.name}",
        )
        self._counts["multi_dangling"] += 1

    def _report(self, record: MagRecord, kind: AnomalyKind, severity: Severity, detail: str) -> None:
        self.sink.emit(
            Anomaly(
                kind=kind,
                severity=severity,
                schema=record.schema.name,
                detail=f"{detail}: {record.describe()}",
                source=record.source,
                line=record.line,
            )
        )
