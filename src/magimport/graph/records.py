# src/magimport/graph/records.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .schema import TableSchema


@dataclass(frozen=True)
class MagRecord:
    """
    One input row bound to its TableSchema (by reference).

    Values are positional in schema column order; the reader guarantees the
    count matches, direct construction is checked here as well.
    """
    schema: TableSchema
    values: Tuple[str, ...]
    source: str = ""
    line: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))
        if len(self.values) != len(self.schema.columns):
            raise ValueError(
                f"{self.schema.name}: expected {len(self.schema.columns)} fields, got {len(self.values)}"
            )

    @classmethod
    def of(cls, schema: TableSchema, *values: str, source: str = "", line: Optional[int] = None) -> "MagRecord":
        return cls(schema=schema, values=tuple(values), source=source, line=line)

    def field(self, index: int) -> str:
        return self.values[index]

    def get(self, column_name: str) -> Optional[str]:
        for col, value in zip(self.schema.columns, self.values):
            if col.name == column_name:
                return value
        return None

    def describe(self) -> str:
        pairs: Sequence[str] = [f"{name}={v!r}" for name, v in zip(self.schema.field_names, self.values)]
        return f"{self.schema.name}({', '.join(pairs)})"
