import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app(tmp_path: Path, clock: FakeClock):
    from ctp.application.container import build_container

    return build_container(tmp_path / "ctp.db", clock=clock)


def seed_user(app, name: str = "Ryan", rate: float = 25.0) -> int:
    return app.users.add_user(name, "Installer", rate)


def seed_project(app, name: str = "Sally Wertman", markup: float = 20.0, budget: float = 150000.0) -> int:
    return app.projects.add_project(name, address="23296 US 12 W", budget=budget, markup_percent=markup)
