from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol

from uptime_alarms.models import CheckResult


class ResultSink(Protocol):
    async def write(self, result: CheckResult) -> None: ...


class JsonLinesResultSink:
    """Appends one time-series row per check result."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def write(self, result: CheckResult) -> None:
        line = json.dumps(result.to_row(), ensure_ascii=True, sort_keys=True)
        async with self._lock:
            await asyncio.to_thread(self._append, line)

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
