from __future__ import annotations

from pathlib import Path
from typing import ClassVar, List, Literal, Optional, Tuple

import orjson
from pydantic import BaseModel

from .engine import ENGINE_HASH, RunOutcome, Terminated
from .locator import Repair
from .program import Program
from .utils import CANONICALIZATION, HASH_ALGORITHM, stable_hash

_PROVENANCE = ("schema_version", "canonicalization", "hash_algorithm", "program_hash", "engine_hash")


class Report(BaseModel):
    """Base for command results.

    ``identity_fields`` names the fields that make two reports the same
    result. Fields left out, such as search cost and timings, may differ
    between strategies or machines without changing ``report_hash``.
    An empty tuple means every field counts.
    """

    identity_fields: ClassVar[Tuple[str, ...]] = ()

    schema_version: str = "v1"
    canonicalization: str = CANONICALIZATION
    hash_algorithm: str = HASH_ALGORITHM
    program_hash: str
    engine_hash: str = ENGINE_HASH

    def report_hash(self) -> str:
        data = self.model_dump(mode="json")
        if self.identity_fields:
            data = {key: data[key] for key in self.identity_fields}
        return stable_hash(data)


class RunReport(Report):
    length: int
    outcome: Literal["TERMINATED", "LOOPED"]
    accumulator: int
    loop_position: Optional[int] = None
    steps: int
    trace_hash: Optional[str] = None

    @classmethod
    def from_outcome(
        cls, program: Program, outcome: RunOutcome, trace_hash: Optional[str] = None
    ) -> "RunReport":
        looped = not isinstance(outcome, Terminated)
        return cls(
            program_hash=program.program_hash,
            length=len(program),
            outcome="LOOPED" if looped else "TERMINATED",
            accumulator=outcome.accumulator,
            loop_position=outcome.position if looped else None,
            steps=outcome.steps,
            trace_hash=trace_hash,
        )


class RepairReport(Report):
    identity_fields: ClassVar[Tuple[str, ...]] = _PROVENANCE + (
        "position",
        "original",
        "replacement",
        "accumulator",
    )

    strategy: str
    tie_break: str
    position: int
    original: str
    replacement: str
    accumulator: int
    runs: int
    steps: int
    candidates_tried: int
    out_of_bounds: int
    verified: Optional[bool] = None

    @classmethod
    def from_repair(
        cls, program: Program, repair: Repair, verified: Optional[bool] = None
    ) -> "RepairReport":
        return cls(
            program_hash=program.program_hash,
            strategy=repair.strategy,
            tie_break=repair.tie_break,
            position=repair.position,
            original=repair.original.render(),
            replacement=repair.replacement.render(),
            accumulator=repair.accumulator,
            runs=repair.stats.runs,
            steps=repair.stats.steps,
            candidates_tried=repair.stats.candidates_tried,
            out_of_bounds=repair.stats.out_of_bounds,
            verified=verified,
        )


class StrategyTiming(BaseModel):
    strategy: str
    repeats: int
    best_ms: float
    mean_ms: float
    runs: int
    steps: int
    position: int
    accumulator: int


class BenchReport(Report):
    identity_fields: ClassVar[Tuple[str, ...]] = _PROVENANCE + ("length", "tie_break", "agreed")

    length: int
    tie_break: str
    timings: List[StrategyTiming]
    agreed: bool


def export_schemas(output_dir: str) -> List[Path]:
    output = Path(output_dir)
    output.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for model in (RunReport, RepairReport, BenchReport):
        schema = model.model_json_schema()
        path = output / f"{model.__name__}.schema.json"
        path.write_bytes(orjson.dumps(schema, option=orjson.OPT_SORT_KEYS))
        written.append(path)
    return written
