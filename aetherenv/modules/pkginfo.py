# aetherenv/modules/pkginfo.py
"""
Package metadata: .PKGINFO, .BUILDINFO and .MTREE, plus a database backend
over a directory of packages.

An extracted package directory must contain .PKGINFO and .MTREE; .BUILDINFO
is optional. Package archives (.pkg.tar.zst, .pkg.tar.xz, .pkg.tar.gz, ...)
are streamed with tarfile, zstd through the zstandard decompressor.
"""

from __future__ import annotations
import gzip
import os
import tarfile
import zlib
from typing import Dict, List, Optional, Tuple

import zstandard

from aetherenv.modules import logger as _logger
from aetherenv.modules.database import StaticDatabase

ARCHIVE_MEMBERS = (".PKGINFO", ".BUILDINFO", ".MTREE")


class PkgInfoError(Exception):
    pass


class KeyValueFile:
    """
    ``key = value`` metadata file. Repeated list keys accumulate, unknown
    keys are kept in ``extra``.
    """

    STRING_FIELDS: Tuple[str, ...] = ()
    INT_FIELDS: Tuple[str, ...] = ()
    LIST_FIELDS: Tuple[str, ...] = ()

    def __init__(self):
        for field in self.STRING_FIELDS:
            setattr(self, field, "")
        for field in self.INT_FIELDS:
            setattr(self, field, 0)
        for field in self.LIST_FIELDS:
            setattr(self, field, [])
        self.extra: Dict[str, List[str]] = {}

    @classmethod
    def parse_text(cls, text: str, source: str = "<string>"):
        info = cls()
        for lineno, line in enumerate(text.splitlines(), 1):
            if not line.strip() or line.startswith("#"):
                continue
            if " = " not in line:
                raise PkgInfoError(f"{source}:{lineno}: expected 'key = value', got {line!r}")
            key, value = line.split(" = ", 1)
            key = key.strip()
            if key in cls.LIST_FIELDS:
                getattr(info, key).append(value)
            elif key in cls.INT_FIELDS:
                try:
                    setattr(info, key, int(value))
                except ValueError:
                    raise PkgInfoError(f"{source}:{lineno}: {key} must be an integer, got {value!r}")
            elif key in cls.STRING_FIELDS:
                setattr(info, key, value)
            else:
                info.extra.setdefault(key, []).append(value)
        return info

    @classmethod
    def parse(cls, path: str):
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise PkgInfoError(f"unable to read file: {path}: {e}") from e
        return cls.parse_bytes(raw, path)

    @classmethod
    def parse_bytes(cls, raw: bytes, source: str):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PkgInfoError(f"{source}: invalid utf-8: {e}") from e
        return cls.parse_text(text, source)

    def to_dict(self):
        data = {}
        for field in self.STRING_FIELDS + self.INT_FIELDS + self.LIST_FIELDS:
            data[field] = getattr(self, field)
        if self.extra:
            data["extra"] = self.extra
        return data


class PkgInfo(KeyValueFile):
    """Fields of a .PKGINFO file"""

    STRING_FIELDS = ("pkgname", "pkgbase", "pkgver", "pkgdesc", "url", "packager", "license")
    INT_FIELDS = ("builddate", "size")
    LIST_FIELDS = ("arch", "conflict", "provides", "depend", "optdepend")

    @classmethod
    def from_archive(cls, path: str) -> "PkgInfo":
        members = read_archive_members(path, (".PKGINFO",))
        if ".PKGINFO" not in members:
            raise PkgInfoError(f"{path}: package is missing .PKGINFO")
        return cls.parse_bytes(members[".PKGINFO"], f"{path}:.PKGINFO")


class BuildInfo(KeyValueFile):
    """Fields of a .BUILDINFO file"""

    STRING_FIELDS = (
        "pkgname", "pkgbase", "pkgver", "pkgbuild_sha256sum", "pkgbuild_md5sum",
        "pkgbuild_sha1sum", "packager", "builddir", "startdir", "buildtool", "buildtoolver",
    )
    INT_FIELDS = ("format", "builddate")
    LIST_FIELDS = ("pkgarch", "buildenv", "options", "installed")


class MTree:
    """
    Entries of a gzip-compressed .MTREE file as ``(path, keywords)``.
    ``/set`` defaults are applied to the entries that follow them.
    """

    def __init__(self, entries: Optional[List[Tuple[str, Dict[str, str]]]] = None):
        self.entries = entries or []

    @classmethod
    def parse(cls, path: str) -> "MTree":
        try:
            with gzip.open(path, "rb") as f:
                raw = f.read()
        except (OSError, EOFError, zlib.error) as e:
            raise PkgInfoError(f"unable to read {path}: {e}") from e
        return cls.parse_text(raw.decode("utf-8", errors="replace"))

    @classmethod
    def parse_bytes(cls, raw: bytes, source: str) -> "MTree":
        try:
            data = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            raise PkgInfoError(f"{source}: not a gzip-compressed mtree: {e}") from e
        return cls.parse_text(data.decode("utf-8", errors="replace"))

    @classmethod
    def parse_text(cls, text: str) -> "MTree":
        defaults: Dict[str, str] = {}
        entries = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            fields = line.split()
            keywords = _keywords(fields[1:])
            if fields[0] == "/set":
                defaults.update(keywords)
            elif fields[0] == "/unset":
                for key in keywords:
                    defaults.pop(key, None)
            else:
                merged = dict(defaults)
                merged.update(keywords)
                entries.append((fields[0], merged))
        return cls(entries)

    def paths(self) -> List[str]:
        return [path for path, _ in self.entries]

    def __len__(self):
        return len(self.entries)


def _keywords(fields: List[str]) -> Dict[str, str]:
    keywords = {}
    for field in fields:
        key, _, value = field.partition("=")
        keywords[key] = value
    return keywords


class Pkg:
    """Everything known about one package: file list and its metadata files"""

    def __init__(self, files: List[str], pkginfo: PkgInfo, mtree: MTree,
                 buildinfo: Optional[BuildInfo] = None):
        self.files = files
        self.pkginfo = pkginfo
        self.mtree = mtree
        self.buildinfo = buildinfo

    @classmethod
    def from_dir(cls, path: str) -> "Pkg":
        is_valid_dir(path)
        files = [os.path.join(path, f) for f in sorted(os.listdir(path))]
        buildinfo = None
        buildinfo_path = os.path.join(path, ".BUILDINFO")
        if os.path.exists(buildinfo_path):
            try:
                buildinfo = BuildInfo.parse(buildinfo_path)
            except PkgInfoError:
                buildinfo = None
        mtree = MTree.parse(os.path.join(path, ".MTREE"))
        pkginfo = PkgInfo.parse(os.path.join(path, ".PKGINFO"))
        return cls(files, pkginfo, mtree, buildinfo)

    @classmethod
    def from_archive(cls, path: str) -> "Pkg":
        members = read_archive_members(path)
        for required in (".PKGINFO", ".MTREE"):
            if required not in members:
                raise PkgInfoError(f"{path}: package is missing {required}")
        buildinfo = None
        if ".BUILDINFO" in members:
            try:
                buildinfo = BuildInfo.parse_bytes(members[".BUILDINFO"], f"{path}:.BUILDINFO")
            except PkgInfoError:
                buildinfo = None
        mtree = MTree.parse_bytes(members[".MTREE"], f"{path}:.MTREE")
        pkginfo = PkgInfo.parse_bytes(members[".PKGINFO"], f"{path}:.PKGINFO")
        return cls(mtree.paths(), pkginfo, mtree, buildinfo)


def read_archive_members(path: str, names=ARCHIVE_MEMBERS) -> Dict[str, bytes]:
    """Read the metadata members ``names`` from a package archive."""
    try:
        if path.endswith(".zst"):
            with open(path, "rb") as fh:
                reader = zstandard.ZstdDecompressor().stream_reader(fh)
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    return _collect_members(tar, names)
        with tarfile.open(path, "r:*") as tar:
            return _collect_members(tar, names)
    except (tarfile.TarError, zstandard.ZstdError, OSError, EOFError) as e:
        raise PkgInfoError(f"{path}: unable to read package archive: {e}") from e


def _collect_members(tar, names) -> Dict[str, bytes]:
    found = {}
    for member in tar:
        name = member.name[2:] if member.name.startswith("./") else member.name
        if name in names and member.isfile():
            found[name] = tar.extractfile(member).read()
            # metadata sits at the front of pacman packages
            if len(found) == len(names):
                break
    return found


def is_valid_dir(path: str):
    """Raise PkgInfoError unless ``path`` looks like an extracted package."""
    try:
        entries = os.listdir(path)
    except OSError as e:
        raise PkgInfoError(f"unable to read directory: {path}: {e}") from e
    if not entries:
        raise PkgInfoError(f"{path}: package contains no data")
    if ".MTREE" not in entries:
        raise PkgInfoError(f"{path}: package is missing .MTREE")
    if ".PKGINFO" not in entries:
        raise PkgInfoError(f"{path}: package is missing .PKGINFO")


class PkgDirDatabase(StaticDatabase):
    """
    Database backend over a directory holding extracted packages and/or
    package archives. Every package found is considered locally known;
    anything that is not a readable package is skipped with a warning.
    """

    def __init__(self, directory: str, logger: Optional[_logger.Logger] = None):
        super().__init__()
        self.directory = os.path.abspath(directory)
        self.log = logger or _logger.Logger("pkginfo")
        self.infos: Dict[str, PkgInfo] = {}
        self.scan()

    def scan(self):
        if not os.path.isdir(self.directory):
            raise PkgInfoError(f"Package directory not found: {self.directory}")
        for entry in sorted(os.listdir(self.directory)):
            path = os.path.join(self.directory, entry)
            try:
                if os.path.isdir(path):
                    is_valid_dir(path)
                    info = PkgInfo.parse(os.path.join(path, ".PKGINFO"))
                elif ".pkg.tar" in entry and not entry.endswith(".sig"):
                    info = PkgInfo.from_archive(path)
                else:
                    continue
                self._register(info, path)
            except PkgInfoError as e:
                self.log.warning(f"Skipping {entry}: {e}")
        self.log.debug(f"{len(self.infos)} packages indexed in {self.directory}")

    def _register(self, info: PkgInfo, path: str):
        if not info.pkgname:
            raise PkgInfoError(f"{path}: .PKGINFO has no pkgname")
        if info.pkgname in self.infos:
            self.log.debug(f"Duplicate package {info.pkgname} in {path}, keeping the first")
            return
        self.infos[info.pkgname] = info
        self.add_package(info.pkgname, depends=info.depend, provides=info.provides)
