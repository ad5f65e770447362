# src/magimport/graph/results.py
from __future__ import annotations

import threading
from typing import Iterable, Iterator, List, Tuple, Union

from .elements import Edge, Vertex


class ResultAccumulator:
    """
    Append-only, ordered collections of emitted vertices and edges.

    Appends are locked so several mappers may share one accumulator; the
    usual setup is one accumulator per partition, combined with merge().
    """

    __slots__ = ("_lock", "_vertices", "_edges")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vertices: List[Vertex] = []
        self._edges: List[Edge] = []

    # ----------------------------- append APIs --------------------------------

    def add_vertex(self, vertex: Vertex) -> None:
        with self._lock:
            self._vertices.append(vertex)

    def add_edge(self, edge: Edge) -> None:
        with self._lock:
            self._edges.append(edge)

    def extend(self, elements: Iterable[Union[Vertex, Edge]]) -> None:
        for el in elements:
            if isinstance(el, Vertex):
                self.add_vertex(el)
            elif isinstance(el, Edge):
                self.add_edge(el)
            else:
                raise TypeError(f"not a graph element: {type(el).__name__}")

    def merge(self, other: "ResultAccumulator") -> None:
        """Append everything from `other` (its order preserved, after ours)."""
        if other is self:
            raise ValueError("cannot merge an accumulator into itself")
        vertices, edges = other.vertices(), other.edges()
        with self._lock:
            self._vertices.extend(vertices)
            self._edges.extend(edges)

    # ----------------------------- read APIs ----------------------------------

    def vertices(self) -> List[Vertex]:
        with self._lock:
            return list(self._vertices)

    def edges(self) -> List[Edge]:
        with self._lock:
            return list(self._edges)

    @property
    def vertex_count(self) -> int:
        return len(self._vertices)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def rows(self) -> Iterator[Tuple[str, object]]:
        """("vertex", Vertex) then ("edge", Edge) tuples, as GraphStore.append() expects."""
        for v in self.vertices():
            yield ("vertex", v)
        for e in self.edges():
            yield ("edge", e)

    def __len__(self) -> int:
        return self.vertex_count + self.edge_count
