# src/magimport/graph/attributes.py
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from .elements import PropertyMap
from .records import MagRecord
from .schema import FieldRole


class AttributeVariant(str, Enum):
    PLAIN = "plain"
    PRIMARY = "primary"      # first edge of a ternary row
    SECONDARY = "secondary"  # second edge; carries the primary key column as an attribute


_ATTRIBUTE_ROLES: Dict[AttributeVariant, FrozenSet[FieldRole]] = {
    AttributeVariant.PLAIN: frozenset({FieldRole.ATTRIBUTE}),
    AttributeVariant.PRIMARY: frozenset({FieldRole.ATTRIBUTE, FieldRole.ATTRIBUTE_PRIMARY}),
    AttributeVariant.SECONDARY: frozenset({FieldRole.ATTRIBUTE, FieldRole.KEY_PRIMARY}),
}


def project_attributes(record: MagRecord, *, variant: AttributeVariant = AttributeVariant.PLAIN) -> PropertyMap:
    """Attribute columns of `record` as a fresh property map; empty values are left out."""
    schema = record.schema
    props: PropertyMap = {}
    for i in schema.indices_with(_ATTRIBUTE_ROLES[variant]):
        value = record.field(i)
        if value == "":
            continue
        props[schema.columns[i].name] = value
    return props
