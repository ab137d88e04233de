"""Hash-chained audit trail of CLI invocations.

Every entry carries the hash of the entry before it, so dropping,
reordering or editing a line breaks the chain. Result entries also carry
the ``report_hash`` of the report they store, which ``verify_chain``
recomputes from the stored payload.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .errors import HandheldError
from .schemas import BenchReport, RepairReport, Report, RunReport
from .utils import append_jsonl, read_jsonl, stable_hash

EventType = Literal["RUN_START", "RUN_RESULT", "REPAIR_RESULT", "BENCH_RESULT", "RUN_FAILED"]

REPORT_EVENTS: Dict[str, Type[Report]] = {
    "RUN_RESULT": RunReport,
    "REPAIR_RESULT": RepairReport,
    "BENCH_RESULT": BenchReport,
}


class JournalEntry(BaseModel):
    seq: int
    ts: int
    event: EventType
    program_hash: Optional[str] = None
    report_hash: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    prev_hash: str = ""
    entry_hash: str = ""

    def chain_hash(self) -> str:
        return stable_hash(self.model_dump(mode="json", exclude={"entry_hash"}))


def _event_for(report: Report) -> str:
    for event, model in REPORT_EVENTS.items():
        if isinstance(report, model):
            return event
    raise TypeError(f"no journal event for {type(report).__name__}")


class Journal:
    def __init__(self, path: Path) -> None:
        self.path = path
        raw = read_jsonl(path)
        self._seq = len(raw)
        self._last_hash = raw[-1].get("entry_hash", "") if raw else ""

    @property
    def last_hash(self) -> str:
        return self._last_hash

    def entries(self) -> List[JournalEntry]:
        return [JournalEntry(**raw) for raw in read_jsonl(self.path)]

    def start(self, command: str, program_path: Path, settings: Settings) -> JournalEntry:
        return self._append(
            "RUN_START",
            {
                "command": command,
                "path": str(program_path),
                "settings": settings.model_dump(mode="json"),
                "settings_hash": settings.settings_hash(),
            },
        )

    def record(self, report: Report) -> JournalEntry:
        return self._append(
            _event_for(report),
            report.model_dump(mode="json"),
            program_hash=report.program_hash,
            report_hash=report.report_hash(),
        )

    def failure(self, error: HandheldError) -> JournalEntry:
        return self._append(
            "RUN_FAILED", {"failure_atom": error.failure_atom, "message": error.message}
        )

    def _append(
        self,
        event: str,
        payload: Dict[str, Any],
        program_hash: Optional[str] = None,
        report_hash: Optional[str] = None,
    ) -> JournalEntry:
        entry = JournalEntry(
            seq=self._seq,
            ts=time.time_ns(),
            event=event,
            program_hash=program_hash,
            report_hash=report_hash,
            payload=payload,
            prev_hash=self._last_hash,
        )
        entry.entry_hash = entry.chain_hash()
        append_jsonl(self.path, entry.model_dump(mode="json"))
        self._seq += 1
        self._last_hash = entry.entry_hash
        return entry

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        prev_hash = ""
        for idx, raw in enumerate(read_jsonl(path)):
            try:
                entry = JournalEntry(**raw)
            except ValidationError:
                return False, f"malformed entry at {idx}"
            if entry.prev_hash != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if entry.seq != idx:
                return False, f"sequence mismatch at {idx}"
            if entry.chain_hash() != entry.entry_hash:
                return False, f"hash mismatch at {idx}"
            model = REPORT_EVENTS.get(entry.event)
            if model is not None:
                try:
                    report = model(**entry.payload)
                except ValidationError:
                    return False, f"malformed report at {idx}"
                if report.report_hash() != entry.report_hash:
                    return False, f"report hash mismatch at {idx}"
            prev_hash = entry.entry_hash
        return True, "ok"
