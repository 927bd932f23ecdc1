import pytest

from aetherenv.modules.config import config
from aetherenv.modules.database import StaticDatabase
from aetherenv.modules.runner import CommandResult


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Fresh defaults for every test, logging to a temp file only."""
    monkeypatch.setattr(config, "locations", [str(tmp_path / "missing.conf")])
    config.reload()
    config.set("logging", "log_file", str(tmp_path / "aetherenv.log"))
    config.set("logging", "log_to_console", "false")
    config.set("logging", "level", "debug")
    yield config
    config.reload()


class FakeRunner:
    """Records commands and answers them from a {tuple(command): (rc, stdout)} table."""

    def __init__(self, responses=None, dry_run=False, missing=False):
        self.responses = responses or {}
        self.dry_run = dry_run
        self.missing = missing
        self.calls = []
        self.history = []

    def run(self, command, cwd=None, env=None, check=True, readonly=False):
        from aetherenv.modules.runner import CommandFailed, RunnerError

        command = [str(c) for c in command]
        self.calls.append((command, env, readonly))
        if self.missing:
            raise RunnerError(f"Unable to execute {command[0]}: not found")
        if self.dry_run and not readonly:
            result = CommandResult(command, 0, "", "", 0, dry_run=True)
        else:
            rc, out = self.responses.get(tuple(command), (0, ""))
            result = CommandResult(command, rc, out, "error: simulated" if rc else "", 0)
        self.history.append(result.to_dict())
        if check and not result.ok():
            raise CommandFailed(result)
        return result


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def scenario_db():
    # A -> B, C ; C -> B
    return StaticDatabase({"A": ["B", "C"], "B": [], "C": ["B"]})
