import os
from pathlib import Path

import pytest

PROGRAMS_DIR = Path(__file__).parent / "programs"


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    _ = config
    run_slow = os.getenv("RUN_SLOW_TESTS", "") or os.getenv("HANDHELD_RUN_SLOW", "")
    if str(run_slow).strip().lower() in {"1", "true", "yes"}:
        return
    skip_slow = pytest.mark.skip(reason="set RUN_SLOW_TESTS=1 to run slow tests")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture
def example_path() -> Path:
    return PROGRAMS_DIR / "example.txt"


@pytest.fixture
def example_lines(example_path: Path) -> list[str]:
    return example_path.read_text(encoding="utf-8").splitlines()
