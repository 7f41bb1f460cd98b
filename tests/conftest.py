# Ensure `import rendersync` works from a fresh clone by putting repo/python on sys.path.
import sys
from pathlib import Path
from typing import Dict

import pytest


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _ensure_python_path():
    pkg_dir = _repo_root() / "python"
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))


_ensure_python_path()

from rendersync import RecordingAdapter, RenderSyncDispatcher  # noqa: E402


class FakeClock:
    """Manually advanced clock used in place of time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapters() -> Dict[str, RecordingAdapter]:
    return {name: RecordingAdapter() for name in ("bloom", "pbr", "lighting", "background", "security")}


@pytest.fixture
def dispatcher(adapters, clock):
    d = RenderSyncDispatcher(adapters, clock=clock)
    yield d
    d.close()
