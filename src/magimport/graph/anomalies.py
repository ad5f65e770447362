# src/magimport/graph/anomalies.py
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class Severity(str, enum.Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AnomalyKind(str, enum.Enum):
    # Mapping
    MISSING_IDENTIFIER = "MISSING_IDENTIFIER"
    UNRESOLVABLE_FOREIGN_KEY = "UNRESOLVABLE_FOREIGN_KEY"
    MALFORMED_KEY_COUNT = "MALFORMED_KEY_COUNT"
    DANGLING_MULTI_ATTRIBUTE_REFERENCE = "DANGLING_MULTI_ATTRIBUTE_REFERENCE"
    EMPTY_MULTI_ATTRIBUTE = "EMPTY_MULTI_ATTRIBUTE"
    NULL_REFERENCE = "NULL_REFERENCE"
    # Reading
    MALFORMED_ROW = "MALFORMED_ROW"
    ENCODING_ERROR = "ENCODING_ERROR"
    IO_ERROR = "IO_ERROR"
    TABLE_MISSING = "TABLE_MISSING"
    SKIPPED = "SKIPPED"
    # Catch-all
    UNKNOWN = "UNKNOWN"


_LOG_LEVELS = {
    Severity.INFO: logging.DEBUG,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Anomaly:
    """
    Immutable record. Persisted by GraphStore via its Arrow mapping.

    `schema` is the table schema name the record belonged to (empty for
    discovery-level notes); `source`/`line` locate the input row when known.
    """
    kind: AnomalyKind
    severity: Severity
    schema: str = ""
    detail: str = ""
    source: str = ""
    line: Optional[int] = None
    ts_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "schema": self.schema,
            "detail": self.detail,
            "source": self.source,
            "line": int(self.line or 0),
            "ts_ms": int(self.ts_ms),
        }


class AnomalySink:
    """
    Thread-safe anomaly collector.

    - emit(): add an anomaly, update counters, log it
    - drain(): atomically return & clear buffered anomalies
    - counters(): snapshot of counters (for receipts/summaries)
    """

    __slots__ = ("_lock", "_buffer", "_counts")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buffer: List[Anomaly] = []
        self._counts: Dict[str, int] = {
            "total": 0,
        }

    # ----------------------------- public API ---------------------------------

    def emit(self, anomaly: Anomaly) -> None:
        with self._lock:
            self._buffer.append(anomaly)
            self._counts["total"] = self._counts.get("total", 0) + 1
            self._counts[f"kind:{anomaly.kind.value}"] = self._counts.get(f"kind:{anomaly.kind.value}", 0) + 1
            self._counts[f"sev:{anomaly.severity.value}"] = self._counts.get(f"sev:{anomaly.severity.value}", 0) + 1
        logger.log(
            _LOG_LEVELS.get(anomaly.severity, logging.WARNING),
            "%s [%s] %s%s",
            anomaly.kind.value,
            anomaly.schema or "-",
            anomaly.detail,
            f" ({anomaly.source}:{anomaly.line})" if anomaly.source else "",
        )

    def extend(self, anomalies: Iterable[Anomaly]) -> None:
        for a in anomalies:
            self.emit(a)

    def drain(self) -> List[Anomaly]:
        with self._lock:
            out = self._buffer
            self._buffer = []
            return out

    def items(self) -> List[Anomaly]:
        """Buffered anomalies (not drained) as a new list."""
        with self._lock:
            return list(self._buffer)

    def of_kind(self, kind: AnomalyKind) -> List[Anomaly]:
        with self._lock:
            return [a for a in self._buffer if a.kind == kind]

    def counters(self) -> Dict[str, int]:
        with self._lock:
            # shallow copy is enough (values are ints)
            return dict(self._counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)
