# src/magimport/graph/keys.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from .anomalies import Anomaly, AnomalyKind, AnomalySink, Severity
from .records import MagRecord
from .schema import FieldRole, SchemaRegistry


class KeyVariant(str, Enum):
    ALL = "all"              # plain KEY columns
    PRIMARY = "primary"      # first edge of a ternary row
    SECONDARY = "secondary"  # second edge of a ternary row


_KEY_ROLES: Dict[KeyVariant, FrozenSet[FieldRole]] = {
    KeyVariant.ALL: frozenset({FieldRole.KEY}),
    KeyVariant.PRIMARY: frozenset({FieldRole.KEY, FieldRole.KEY_PRIMARY}),
    KeyVariant.SECONDARY: frozenset({FieldRole.KEY, FieldRole.KEY_SECONDARY}),
}


@dataclass(frozen=True)
class ForeignKeyRef:
    target_schema: str
    value: str

    @property
    def is_null(self) -> bool:
        return self.value == ""


def resolve_keys(
    record: MagRecord,
    registry: SchemaRegistry,
    *,
    variant: KeyVariant = KeyVariant.ALL,
    sink: Optional[AnomalySink] = None,
) -> List[ForeignKeyRef]:
    """
    Foreign keys embedded in `record`, in column order.

    Columns whose name does not split into exactly `<schema><sep><column>`, or
    whose target schema is not registered, are reported and skipped; the
    remaining keys are still returned. Values are passed through as they are,
    an empty value is a NULL reference the caller decides about.
    """
    schema = record.schema
    keys: List[ForeignKeyRef] = []
    for i in schema.indices_with(_KEY_ROLES[variant]):
        column = schema.columns[i].name
        parts = schema.split_key_column(column)
        if len(parts) != 2:
            _report(sink, record, f"malformed key column name: {column}")
            continue
        target = parts[0]
        if target not in registry:
            _report(sink, record, f"foreign key to unknown table: {target} (column {column})")
            continue
        keys.append(ForeignKeyRef(target_schema=target, value=record.field(i)))
    return keys


def _report(sink: Optional[AnomalySink], record: MagRecord, detail: str) -> None:
    if sink is None:
        return
    sink.emit(
        Anomaly(
            kind=AnomalyKind.UNRESOLVABLE_FOREIGN_KEY,
            severity=Severity.WARN,
            schema=record.schema.name,
            detail=detail,
            source=record.source,
            line=record.line,
        )
    )
