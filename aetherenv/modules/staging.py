# aetherenv/modules/staging.py
import os
import shlex
from datetime import datetime
from typing import List, Optional

from aetherenv.modules import logger as _logger
from aetherenv.modules.config import config as _config
from aetherenv.modules.runner import CommandRunner, RunnerError


class StagingError(Exception):
    pass


class StagingRoot:
    """
    Isolated root populated for offline installation.

      - clean:     empty the root (through sudo)
      - download:  fetch packages into the host pacman cache
      - bootstrap: pacstrap a minimal root holding pacman
      - install:   run pacman inside the root under proot, with the host
                   cache bind-mounted
    Dry-run unless the runner says otherwise.
    """

    def __init__(self, root: Optional[str] = None, runner: Optional[CommandRunner] = None,
                 config=None, logger: Optional[_logger.Logger] = None):
        cfg = config or _config
        self.root = os.path.abspath(root or cfg.get("stage", "root", fallback="aetherenv-root"))
        self.sudo = shlex.split(cfg.get("stage", "sudo", fallback="sudo"))
        self.pacman = cfg.get("database", "pacman", fallback="pacman")
        self.pacstrap = cfg.get("stage", "pacstrap", fallback="pacstrap")
        self.proot = cfg.get("stage", "proot", fallback="proot")
        self.pkg_cache = cfg.get("stage", "pkg_cache", fallback="/var/cache/pacman/pkg")
        self.bind_target = cfg.get("stage", "bind_target", fallback="/pkgs")
        self.log = logger or _logger.Logger("staging")
        self.runner = runner or CommandRunner(dry_run=True, logger=self.log)
        self.history = []

    @property
    def dry_run(self):
        return self.runner.dry_run

    def _run(self, command: List[str], action: str):
        try:
            result = self.runner.run(command)
        except RunnerError as e:
            raise StagingError(f"{action} failed: {e}") from e
        self._record(action, {"command": result.command, "rc": result.returncode})
        return result

    # -------------------------------
    # Steps
    # -------------------------------
    def clean(self):
        """Remove everything below the root, keeping the root itself"""
        if not os.path.isdir(self.root):
            self.log.debug(f"Nothing to clean in {self.root}")
            self._record("clean", {"entries": 0})
            return
        entries = [os.path.join(self.root, e) for e in sorted(os.listdir(self.root))]
        self.log.info(f"Cleaning staging root {self.root}")
        if entries:
            self._run(self.sudo + ["rm", "-rf", "--"] + entries, "clean")
        else:
            self._record("clean", {"entries": 0})

    def download(self, pkgs: List[str]):
        if not pkgs:
            self.log.info("No packages to download")
            return
        self.log.info(f"Downloading {len(pkgs)} packages into the pacman cache")
        self._run(self.sudo + [self.pacman, "-Sw", "--noconfirm", "--needed"] + list(pkgs),
                  "download")

    def bootstrap(self):
        self.log.info(f"Bootstrapping {self.root}")
        if not self.dry_run:
            os.makedirs(self.root, exist_ok=True)
        self._run([self.pacstrap, "-cN", self.root, "pacman"], "bootstrap")

    def install(self, pkgs: List[str]):
        if not pkgs:
            self.log.info("No packages to install")
            return
        self.log.info(f"Installing {len(pkgs)} packages into {self.root}")
        command = [
            self.proot, "-b", f"{self.pkg_cache}:{self.bind_target}", "-S", self.root,
            self.pacman, "--needed", "--noconfirm", "-S",
        ] + list(pkgs)
        self._run(command, "install")

    def stage(self, pkgs: List[str], clean: bool = False):
        """Full pipeline: [clean], download, bootstrap, install"""
        if clean:
            self.clean()
        self.download(pkgs)
        self.bootstrap()
        self.install(pkgs)
        self.log.success(f"Staged {len(pkgs)} packages in {self.root}")

    # -------------------------------
    # History
    # -------------------------------
    def _record(self, action, details=None):
        entry = {
            "action": action,
            "timestamp": datetime.now().isoformat(),
            "dry_run": self.dry_run,
            "details": details or {},
        }
        self.history.append(entry)

    def history_log(self):
        return self.history
