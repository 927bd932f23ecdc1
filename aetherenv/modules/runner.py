# aetherenv/modules/runner.py
import os
import subprocess
import shlex
import time
import json
from datetime import datetime
from typing import Dict, List, Optional

from aetherenv.modules import logger as _logger


class RunnerError(Exception):
    pass


class CommandFailed(RunnerError):
    def __init__(self, result):
        self.result = result
        super().__init__(
            f"Command failed ({result.returncode}): {' '.join(result.command)}\n{result.stderr}"
        )


class CommandResult:
    """Outcome of one executed (or simulated) command"""

    def __init__(self, command, returncode, stdout, stderr, duration, dry_run=False):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.duration = duration
        self.dry_run = dry_run
        self.timestamp = datetime.now().isoformat()

    def ok(self):
        return self.returncode == 0

    def lines(self) -> List[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

    def to_dict(self):
        return {
            "command": self.command,
            "returncode": self.returncode,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration": self.duration,
            "dry_run": self.dry_run,
            "timestamp": self.timestamp,
        }


class CommandRunner:
    """
    Synchronous executor for the external tools aetherenv drives
    (pacman, pacstrap, proot, sudo).

      - dry-run: mutating commands are logged and recorded, not executed
      - readonly commands (database queries) always run
      - history of every command, exportable as JSON
    """

    def __init__(self, dry_run: bool = False, env: Optional[Dict[str, str]] = None,
                 logger: Optional[_logger.Logger] = None):
        self.dry_run = dry_run
        self.env = env
        self.log = logger or _logger.Logger("runner")
        self.history = []

    def run(self, command, cwd=None, env=None, check=True, readonly=False) -> CommandResult:
        """Run a command to completion, capturing stdout/stderr as text."""
        if isinstance(command, str):
            command = shlex.split(command)
        command = [str(c) for c in command]

        if self.dry_run and not readonly:
            self.log.info(f"[DRY-RUN] {' '.join(command)}")
            result = CommandResult(command, 0, "", "", 0, dry_run=True)
            self.history.append(result.to_dict())
            return result

        self.log.debug(f"Running: {' '.join(command)}")
        full_env = os.environ.copy()
        if self.env:
            full_env.update(self.env)
        if env:
            full_env.update(env)

        start = time.time()
        try:
            proc = subprocess.run(
                command,
                cwd=cwd,
                env=full_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise RunnerError(f"Unable to execute {command[0]}: {e}") from e

        result = CommandResult(command, proc.returncode, proc.stdout, proc.stderr,
                               time.time() - start)
        self.history.append(result.to_dict())
        if not result.ok() and check:
            raise CommandFailed(result)
        return result

    def save_history(self, path="aetherenv-history.json"):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.history, f, indent=2)
        self.log.info(f"History saved to {path}")

    def stats(self):
        """Simple counters over the commands run so far"""
        total = len(self.history)
        success = sum(1 for h in self.history if h["returncode"] == 0)
        fail = total - success
        avg_time = sum(h["duration"] for h in self.history) / total if total else 0
        return {"total": total, "success": success, "fail": fail, "avg_time": avg_time}
