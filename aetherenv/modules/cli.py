# aetherenv/modules/cli.py
"""
Command line interface for aetherenv.
- Uses rich for tables, panels and progress; all of it goes to stderr so
  stdout only carries package names and can be piped into pacman.
- Staging is dry-run by default (use --execute to apply).

Usage examples:
  aetherenv deps firefox
  aetherenv deps --sort firefox thunderbird
  aetherenv providers firefox
  aetherenv stage firefox --root ./env --clean --execute
  aetherenv --graph graph.yaml deps A
  aetherenv info ./pkg/.PKGINFO
  aetherenv info bash-5.2.026-2-x86_64.pkg.tar.zst --files
"""

from __future__ import annotations
import argparse
import os
import sys
import traceback
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, MofNCompleteColumn

from aetherenv import __version__
from aetherenv.modules import logger as _logger
from aetherenv.modules.config import config
from aetherenv.modules.database import DatabaseError, open_database
from aetherenv.modules.pkginfo import BuildInfo, Pkg, PkgInfo, PkgInfoError
from aetherenv.modules.providers import ProviderResolver
from aetherenv.modules.resolver import DependencyResolver
from aetherenv.modules.runner import CommandRunner
from aetherenv.modules.staging import StagingRoot, StagingError


def make_console(no_color: bool, quiet: bool) -> Console:
    if no_color:
        return Console(stderr=True, no_color=True, quiet=quiet)
    return Console(stderr=True, quiet=quiet)


def unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


class CLI:
    def __init__(self, console: Console, out=None):
        self.console = console
        self.out = out or sys.stdout
        self.log = _logger.Logger("cli")

    def _emit(self, names):
        for name in names:
            print(name, file=self.out)

    def _database(self, args, runner=None):
        return open_database(config, graph_file=args.graph, pkg_dir=args.pkgdir, runner=runner)

    def _providers(self, database, deps: List[str]):
        resolver = ProviderResolver(database, logger=self.log)
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                      BarColumn(), MofNCompleteColumn(), console=self.console,
                      transient=True) as progress:
            task = progress.add_task("resolving providers", total=len(deps))

            def advance(name, provider):
                progress.update(task, advance=1, description=f"{name} -> {provider or '?'}")

            providers, unresolved = resolver.resolve_all(deps, progress=advance)
        if unresolved:
            self.console.print(Panel("\n".join(unresolved), title="no provider found",
                                     style="yellow"))
        return unique(providers), unresolved

    # -----------------------
    # deps
    # -----------------------
    def cmd_deps(self, args: argparse.Namespace):
        resolver = DependencyResolver(self._database(args), logger=self.log)
        if args.sort:
            self._emit(resolver.resolve_unique(args.packages))
        else:
            # stream names as they are discovered
            for name in resolver.iter_closure(args.packages):
                print(name, file=self.out)
        return 0

    # -----------------------
    # providers
    # -----------------------
    def cmd_providers(self, args: argparse.Namespace):
        database = self._database(args)
        self.console.print("[blue]resolving dependencies...[/blue]")
        deps = DependencyResolver(database, logger=self.log).resolve_unique(args.packages)
        self.console.print("[blue]resolving providers...[/blue]")
        providers, unresolved = self._providers(database, deps)
        self._emit(providers)
        return 1 if unresolved and args.strict else 0

    # -----------------------
    # stage
    # -----------------------
    def cmd_stage(self, args: argparse.Namespace):
        runner = CommandRunner(dry_run=not args.execute, logger=self.log)
        database = self._database(args, runner=runner)
        self.console.print("[blue]resolving dependencies...[/blue]")
        deps = DependencyResolver(database, logger=self.log).resolve_unique(args.packages)
        self.console.print("[blue]resolving providers...[/blue]")
        providers, unresolved = self._providers(database, deps)
        if unresolved and args.strict:
            self.console.print("[red]Unresolved dependencies, not staging[/red]")
            return 1

        root = StagingRoot(args.root, runner=runner, config=config, logger=self.log)
        root.stage(providers, clean=args.clean)

        table = Table(title=f"staging {root.root}" + (" (dry-run)" if root.dry_run else ""))
        table.add_column("Step", style="bold")
        table.add_column("Command", overflow="fold")
        for entry in root.history_log():
            command = entry["details"].get("command")
            table.add_row(entry["action"], " ".join(command) if command else "-")
        self.console.print(table)
        stats = runner.stats()
        self.console.print(f"{stats['total']} commands, {stats['fail']} failed")
        if args.history:
            runner.save_history(args.history)
        self._emit(providers)
        return 0

    # -----------------------
    # info
    # -----------------------
    def _metadata_table(self, title: str, data: dict) -> Table:
        table = Table(title=title)
        table.add_column("Key", style="bold")
        table.add_column("Value", overflow="fold")
        for key, value in data.items():
            if isinstance(value, list):
                value = ", ".join(value) if value else "-"
            elif isinstance(value, dict):
                value = ", ".join(f"{k}={'; '.join(v)}" for k, v in value.items())
            table.add_row(key, str(value))
        return table

    def cmd_info(self, args: argparse.Namespace):
        out = Console(file=self.out, no_color=self.console.no_color)
        path = args.path
        if os.path.basename(path) == ".PKGINFO":
            info = PkgInfo.parse(path)
            out.print(self._metadata_table(f"Info: {info.pkgname or path}", info.to_dict()))
            return 0
        if os.path.basename(path) == ".BUILDINFO":
            info = BuildInfo.parse(path)
            out.print(self._metadata_table(f"Build info: {info.pkgname or path}", info.to_dict()))
            return 0

        pkg = Pkg.from_dir(path) if os.path.isdir(path) else Pkg.from_archive(path)
        name = pkg.pkginfo.pkgname or path
        out.print(self._metadata_table(f"Info: {name}", pkg.pkginfo.to_dict()))
        if pkg.buildinfo:
            out.print(self._metadata_table(f"Build info: {name}", pkg.buildinfo.to_dict()))
        if args.files:
            files = Table(title=f"Files: {name}")
            files.add_column("Path")
            for entry in pkg.mtree.paths():
                files.add_row(entry)
            out.print(files)
        else:
            out.print(f"{len(pkg.mtree)} mtree entries, {len(pkg.files)} files")
        return 0


# -----------------------
# argparse setup
# -----------------------
def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="aetherenv",
                                 description="Resolve pacman dependency closures and stage them")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--no-color", action="store_true", help="Disable color output")
    ap.add_argument("--quiet", action="store_true", help="Quiet mode; no logs or progress")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    ap.add_argument("--conf", help="Path to aetherenv.conf")
    src = ap.add_mutually_exclusive_group()
    src.add_argument("--graph", help="Resolve against a YAML/JSON graph file instead of pacman")
    src.add_argument("--pkgdir", help="Resolve against a directory of packages")
    sub = ap.add_subparsers(dest="command", required=True)

    p_deps = sub.add_parser("deps", aliases=["d"], help="Print the transitive dependency closure")
    p_deps.add_argument("packages", nargs="*")
    p_deps.add_argument("--sort", action="store_true", help="Sort and remove duplicates")

    p_prov = sub.add_parser("providers", aliases=["p"], help="Print concrete providing packages")
    p_prov.add_argument("packages", nargs="*")
    p_prov.add_argument("--strict", action="store_true", help="Fail on unresolved dependencies")

    p_stage = sub.add_parser("stage", aliases=["s"], help="Stage packages into an isolated root")
    p_stage.add_argument("packages", nargs="*")
    p_stage.add_argument("--root", help="Staging root (default from config)")
    p_stage.add_argument("--clean", action="store_true", help="Empty the root first")
    p_stage.add_argument("--execute", action="store_true", help="Actually run the commands")
    p_stage.add_argument("--strict", action="store_true", help="Fail on unresolved dependencies")
    p_stage.add_argument("--history", help="Write the executed commands to this JSON file")

    p_info = sub.add_parser("info", aliases=["i"], help="Show package metadata")
    p_info.add_argument("path", help=".PKGINFO, .BUILDINFO, package directory or archive")
    p_info.add_argument("-l", "--files", action="store_true", help="List the mtree entries")
    return ap


COMMANDS = {
    "deps": "cmd_deps", "d": "cmd_deps",
    "providers": "cmd_providers", "p": "cmd_providers",
    "stage": "cmd_stage", "s": "cmd_stage",
    "info": "cmd_info", "i": "cmd_info",
}


def main(argv: Optional[List[str]] = None, out=None):
    argv = sys.argv[1:] if argv is None else argv
    parser = build_argparser()
    args = parser.parse_args(argv)

    console = make_console(args.no_color, args.quiet)
    try:
        if args.conf:
            config.reload(args.conf)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        return 2
    if args.quiet:
        config.set("logging", "log_to_console", "false")
    if args.no_color:
        config.set("logging", "color_output", "false")
    if args.verbose:
        config.set("logging", "level", "debug")

    cli = CLI(console=console, out=out)
    try:
        return getattr(cli, COMMANDS[args.command])(args)
    except (DatabaseError, StagingError, PkgInfoError) as e:
        console.print(f"[red]{e}[/red]")
        cli.log.error(str(e))
        return 2
    except Exception as e:
        console.print(f"[red]Unhandled error: {e}[/red]")
        cli.log.error(traceback.format_exc())
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
