import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from handheld.config import Settings
from handheld.engine import Engine, run
from handheld.errors import NoFixFound
from handheld.journal import Journal, JournalEntry
from handheld.locator import locate
from handheld.program import Program, acc, parse
from handheld.schemas import RepairReport, RunReport


def _loop_report(example_lines: list[str]) -> RunReport:
    program = parse(example_lines)
    return RunReport.from_outcome(program, run(program))


def _rewrite(path: Path, entries: list[dict]) -> None:
    path.write_text("".join(json.dumps(entry) + "\n" for entry in entries), encoding="utf-8")


def test_journal_chain_continues_after_reopen(tmp_path: Path, example_lines: list[str]) -> None:
    path = tmp_path / "journal.jsonl"
    first = Journal(path)
    first.start("loop", tmp_path / "p.txt", Settings())
    second = Journal(path)
    assert second.last_hash == first.last_hash
    entry = second.record(_loop_report(example_lines))
    assert entry.seq == 1
    assert entry.event == "RUN_RESULT"
    ok, message = Journal.verify_chain(path)
    assert ok
    assert message == "ok"


def test_journal_entries_are_typed(tmp_path: Path, example_lines: list[str]) -> None:
    path = tmp_path / "journal.jsonl"
    journal = Journal(path)
    report = _loop_report(example_lines)
    journal.record(report)
    journal.failure(NoFixFound("nothing to flip"))
    entries = journal.entries()
    assert all(isinstance(entry, JournalEntry) for entry in entries)
    assert entries[0].program_hash == report.program_hash
    assert entries[0].report_hash == report.report_hash()
    assert RunReport(**entries[0].payload) == report
    assert entries[1].event == "RUN_FAILED"
    assert entries[1].payload["failure_atom"] == NoFixFound.failure_atom
    assert entries[1].report_hash is None


def test_journal_rejects_non_report_objects(tmp_path: Path) -> None:
    with pytest.raises(TypeError):
        Journal(tmp_path / "journal.jsonl").record(Settings())  # type: ignore[arg-type]


def test_journal_detects_dropped_entry(tmp_path: Path, example_lines: list[str]) -> None:
    path = tmp_path / "journal.jsonl"
    journal = Journal(path)
    for _ in range(3):
        journal.record(_loop_report(example_lines))
    lines = path.read_text(encoding="utf-8").splitlines()
    path.write_text("\n".join([lines[0], lines[2]]) + "\n", encoding="utf-8")
    ok, message = Journal.verify_chain(path)
    assert not ok
    assert message == "prev_hash mismatch at 1"


def test_journal_detects_rechained_report_edit(tmp_path: Path, example_lines: list[str]) -> None:
    path = tmp_path / "journal.jsonl"
    journal = Journal(path)
    journal.start("loop", tmp_path / "p.txt", Settings())
    journal.record(_loop_report(example_lines))
    raw = [entry.model_dump(mode="json") for entry in journal.entries()]
    raw[1]["payload"]["accumulator"] = 6
    edited = JournalEntry(**raw[1])
    raw[1]["entry_hash"] = edited.chain_hash()
    _rewrite(path, raw)
    ok, message = Journal.verify_chain(path)
    assert not ok
    assert message == "report hash mismatch at 1"


def test_journal_detects_malformed_entry(tmp_path: Path) -> None:
    path = tmp_path / "journal.jsonl"
    _rewrite(path, [{"seq": 0, "event": "SOMETHING"}])
    ok, message = Journal.verify_chain(path)
    assert not ok
    assert message == "malformed entry at 0"


def test_run_report_from_loop(example_lines: list[str]) -> None:
    program = parse(example_lines)
    engine = Engine(record_trace=True)
    report = RunReport.from_outcome(program, engine.run(program), engine.trace_hash())
    assert report.outcome == "LOOPED"
    assert report.loop_position == 1
    assert report.steps == 7
    assert report.program_hash == program.program_hash
    assert report.report_hash() == RunReport(**report.model_dump()).report_hash()


def test_run_report_from_termination() -> None:
    program = Program((acc(2), acc(3)))
    report = RunReport.from_outcome(program, run(program))
    assert report.outcome == "TERMINATED"
    assert report.accumulator == 5
    assert report.loop_position is None
    assert report.trace_hash is None


def test_repair_report_hash_ignores_search_cost(example_lines: list[str]) -> None:
    program = parse(example_lines)
    naive = RepairReport.from_repair(program, locate(program, strategy="naive"))
    speculative = RepairReport.from_repair(program, locate(program, strategy="speculative"))
    assert naive.steps != speculative.steps
    assert naive.report_hash() == speculative.report_hash()


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HANDHELD_STRATEGY", "naive")
    monkeypatch.setenv("HANDHELD_BENCH_REPEATS", "3")
    settings = Settings()
    assert settings.strategy == "naive"
    assert settings.bench_repeats == 3
    assert settings.tie_break == "lowest_index"


def test_settings_validation() -> None:
    with pytest.raises(ValidationError):
        Settings(strategy="random")
    with pytest.raises(ValidationError):
        Settings(bench_repeats=0)
    assert Settings().settings_hash() == Settings().settings_hash()
