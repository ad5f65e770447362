# src/magimport/graph/schema.py
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core.config import setting

DEFAULT_KEY_SEPARATOR = "."

# ==============================================================================
# Schema model
# ==============================================================================


class SchemaKind(str, Enum):
    NODE = "NODE"
    EDGE = "EDGE"
    TERNARY_EDGE = "TERNARY_EDGE"      # one row -> two edges (primary/secondary)
    MULTI_ATTRIBUTE = "MULTI_ATTRIBUTE"  # one row -> one value folded into a vertex


class FieldRole(str, Enum):
    ID = "ID"
    ATTRIBUTE = "ATTRIBUTE"
    KEY = "KEY"
    KEY_PRIMARY = "KEY_PRIMARY"
    KEY_SECONDARY = "KEY_SECONDARY"
    ATTRIBUTE_PRIMARY = "ATTRIBUTE_PRIMARY"


# Names used by older schema definitions
_KIND_ALIASES = {"EDGE_3": SchemaKind.TERNARY_EDGE}
_ROLE_ALIASES = {
    "KEY_1": FieldRole.KEY_PRIMARY,
    "KEY_2": FieldRole.KEY_SECONDARY,
    "ATTRIBUTE_1": FieldRole.ATTRIBUTE_PRIMARY,
}

# Processing order for whole tables: owners of vertices first.
KIND_ORDER: Dict[SchemaKind, int] = {
    SchemaKind.NODE: 0,
    SchemaKind.EDGE: 1,
    SchemaKind.TERNARY_EDGE: 2,
    SchemaKind.MULTI_ATTRIBUTE: 3,
}


class SchemaConfigError(ValueError):
    """Schema definitions are unusable; the whole run is invalid."""


@dataclass(frozen=True)
class Column:
    name: str
    role: FieldRole


@dataclass(frozen=True)
class TableSchema:
    """
    Shape of one table. Column order matches the positional layout of records.

    KEY-role column names encode their target as
    `<targetSchemaName><separator><targetColumn>`, e.g. `Papers.PaperID`.
    """
    name: str
    kind: SchemaKind
    columns: Tuple[Column, ...]
    separator: str = DEFAULT_KEY_SEPARATOR

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        if not self.name:
            raise SchemaConfigError("schema name must be non-empty")
        if len(self.separator) != 1:
            raise SchemaConfigError(f"{self.name}: key separator must be a single character, got {self.separator!r}")
        names = self.field_names
        if len(set(names)) != len(names):
            raise SchemaConfigError(f"{self.name}: duplicate column names")
        if self.kind == SchemaKind.NODE:
            ids = sum(1 for c in self.columns if c.role == FieldRole.ID)
            if ids != 1:
                raise SchemaConfigError(f"{self.name}: NODE schema needs exactly one ID column, found {ids}")

    # ------------------------------------------------------------------ views

    @property
    def field_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def id_index(self) -> Optional[int]:
        for i, c in enumerate(self.columns):
            if c.role == FieldRole.ID:
                return i
        return None

    def indices_with(self, roles: Iterable[FieldRole]) -> List[int]:
        wanted = set(roles)
        return [i for i, c in enumerate(self.columns) if c.role in wanted]

    def split_key_column(self, column_name: str) -> List[str]:
        return column_name.split(self.separator)


# ==============================================================================
# Registry
# ==============================================================================


class SchemaRegistry:
    """
    Name-indexed table schemas.

    Populated once before processing; read-only afterwards, so it can be shared
    between concurrent readers without locking.
    """

    def __init__(self, schemas: Iterable[TableSchema] = ()) -> None:
        self._by_name: Dict[str, TableSchema] = {}
        for s in schemas:
            self.register(s)

    @classmethod
    def from_schemas(cls, schemas: Iterable[TableSchema]) -> "SchemaRegistry":
        """Build a registry, rejecting duplicate schema names."""
        reg = cls()
        for s in schemas:
            if s.name in reg:
                raise SchemaConfigError(f"duplicate schema name: {s.name}")
            reg.register(s)
        return reg

    def register(self, schema: TableSchema) -> None:
        # Later registrations overwrite; uniqueness is checked by from_schemas().
        self._by_name[schema.name] = schema

    def lookup(self, name: str) -> Optional[TableSchema]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return sorted(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(list(self._by_name.values()))

    def __len__(self) -> int:
        return len(self._by_name)


# ==============================================================================
# Loading schema definitions
# ==============================================================================


def _parse_kind(raw: object, table: str) -> SchemaKind:
    key = str(raw or "").strip().upper()
    if key in _KIND_ALIASES:
        return _KIND_ALIASES[key]
    try:
        return SchemaKind(key)
    except ValueError:
        raise SchemaConfigError(f"{table}: unknown schema kind {raw!r}") from None


def _parse_role(raw: object, table: str) -> FieldRole:
    key = str(raw or "").strip().upper()
    if key in _ROLE_ALIASES:
        return _ROLE_ALIASES[key]
    try:
        return FieldRole(key)
    except ValueError:
        raise SchemaConfigError(f"{table}: unknown column role {raw!r}") from None


def _parse_columns(raw: object, table: str) -> List[Column]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise SchemaConfigError(f"{table}: 'columns' must be a list")
    cols: List[Column] = []
    for item in raw:
        # Accept ["name", "ROLE"] pairs or {"name": ..., "role": ...} objects
        if isinstance(item, Mapping):
            name, role = item.get("name"), item.get("role")
        elif isinstance(item, Sequence) and not isinstance(item, (str, bytes)) and len(item) == 2:
            name, role = item[0], item[1]
        else:
            raise SchemaConfigError(f"{table}: malformed column entry {item!r}")
        if not name:
            raise SchemaConfigError(f"{table}: column without a name")
        cols.append(Column(name=str(name), role=_parse_role(role, table)))
    return cols


def schemas_from_dict(doc: Mapping) -> SchemaRegistry:
    """
    Build a registry from a schema document:

        {"separator": ".", "tables": [{"name": ..., "kind": ..., "columns": [...]}]}
    """
    if not isinstance(doc, Mapping):
        raise SchemaConfigError("schema document must be a JSON object")
    default_sep = str(doc.get("separator") or setting("schema.key_separator", DEFAULT_KEY_SEPARATOR))
    tables = doc.get("tables")
    if not isinstance(tables, list):
        raise SchemaConfigError("schema document needs a 'tables' list")

    schemas: List[TableSchema] = []
    for t in tables:
        if not isinstance(t, Mapping):
            raise SchemaConfigError(f"malformed table entry {t!r}")
        name = str(t.get("name") or "")
        schemas.append(
            TableSchema(
                name=name,
                kind=_parse_kind(t.get("kind"), name),
                columns=tuple(_parse_columns(t.get("columns"), name)),
                separator=str(t.get("separator") or default_sep),
            )
        )
    return SchemaRegistry.from_schemas(schemas)


def load_schemas(path: Path) -> SchemaRegistry:
    path = Path(path)
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SchemaConfigError(f"cannot read schema file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise SchemaConfigError(f"schema file {path} is not valid JSON: {e}") from e
    return schemas_from_dict(doc)
