# src/magimport/graph/elements.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Union

# Attribute values are plain strings, or lists of strings for multi-valued attributes.
PropertyValue = Union[str, List[str]]
PropertyMap = Dict[str, PropertyValue]

EDGE_ID_SEPARATOR = "|"


def edge_id(source: str, target: str, sep: str = EDGE_ID_SEPARATOR) -> str:
    # Deterministic; parallel edges between the same pair share an id.
    return f"{source}{sep}{target}"


@dataclass(frozen=True)
class Vertex:
    """
    A graph vertex. `properties` may be the same dict object held by the
    multi-attribute accumulator; values folded in later show up here.
    """
    id: str
    label: str
    properties: PropertyMap = field(default_factory=dict)


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    label: str
    properties: PropertyMap = field(default_factory=dict)


def props_to_json(props: PropertyMap) -> str:
    return json.dumps(props, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
