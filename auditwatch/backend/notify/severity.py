"""
notify/severity.py

SeverityTable — static event-id → Severity lookup used for the
critical-override check and the {severity} template tag.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Mapping

from ..engine.models import Severity

logger = logging.getLogger(__name__)


class SeverityTable:
    def __init__(
        self,
        mapping: Mapping[int, Severity] | None = None,
        default: Severity = Severity.LOW,
    ) -> None:
        self._map: dict[int, Severity] = dict(mapping or {})
        self.default = default

    def get_severity(self, event_id: int) -> Severity:
        return self._map.get(int(event_id), self.default)

    @classmethod
    def with_critical(cls, critical_ids: Iterable[int], default: Severity = Severity.LOW) -> "SeverityTable":
        return cls({int(code): Severity.CRITICAL for code in critical_ids}, default)

    @classmethod
    def from_file(cls, path: str) -> "SeverityTable":
        """JSON object: {"1002": "HIGH", "6004": "CRITICAL", ...}"""
        with open(Path(path), encoding="utf-8") as f:
            data = json.load(f)
        mapping = {int(code): Severity(str(level).upper()) for code, level in data.items()}
        logger.info("Severity table loaded from %r — %d event(s)", path, len(mapping))
        return cls(mapping)

    def __len__(self) -> int:
        return len(self._map)
