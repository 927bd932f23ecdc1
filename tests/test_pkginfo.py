import gzip
import io
import tarfile

import pytest
import zstandard

from aetherenv.modules.pkginfo import (
    BuildInfo,
    MTree,
    Pkg,
    PkgDirDatabase,
    PkgInfo,
    PkgInfoError,
    is_valid_dir,
    read_archive_members,
)

PKGINFO = """\
# Generated by makepkg 6.0.2
pkgname = bash
pkgbase = bash
pkgver = 5.2.026-2
pkgdesc = The GNU Bourne Again shell
url = https://www.gnu.org/software/bash/bash.html
builddate = 1706812345
packager = Someone <someone@example.org>
size = 9437184
arch = x86_64
license = GPL-3.0-or-later
provides = sh
backup = etc/bash.bashrc
depend = readline>=7.0
depend = libreadline.so=8-64
depend = glibc
depend = ncurses
optdepend = bash-completion: for tab completion
"""

BUILDINFO = """\
format = 2
pkgname = bash
pkgbase = bash
pkgver = 5.2.026-2
pkgarch = x86_64
pkgbuild_sha256sum = 0123abcd
packager = Someone <someone@example.org>
builddate = 1706812345
builddir = /build
startdir = /startdir
buildtool = devtools
buildtoolver = 1:1.1.0-1-any
buildenv = !distcc
buildenv = color
options = strip
options = !debug
installed = glibc-2.39-1-x86_64
installed = readline-8.2.010-1-x86_64
"""

MTREE = """\
#mtree
/set type=file uid=0 gid=0 mode=644
./.BUILDINFO time=1706812345.0 size=1024 md5digest=aa
./.PKGINFO time=1706812345.0 size=512
/set mode=755
./usr time=1706812345.0 type=dir
./usr/bin/bash time=1706812345.0 size=1100000
/unset mode
./usr/share/doc time=1706812345.0 type=dir
"""


def gz(text):
    return gzip.compress(text.encode("utf-8"))


def tar_bytes(members):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def write_archive(path, pkginfo, mtree=MTREE, buildinfo=None):
    members = {".PKGINFO": pkginfo.encode("utf-8")}
    if buildinfo is not None:
        members[".BUILDINFO"] = buildinfo.encode("utf-8")
    if mtree is not None:
        members[".MTREE"] = gz(mtree)
    members["usr/bin/bash"] = b"\x7fELF"
    raw = tar_bytes(members)
    if str(path).endswith(".zst"):
        path.write_bytes(zstandard.ZstdCompressor().compress(raw))
    else:
        path.write_bytes(gzip.compress(raw))
    return path


def write_pkgdir(root, name, depends=(), provides=(), buildinfo=None):
    d = root / name
    d.mkdir()
    lines = [f"pkgname = {name}", "pkgver = 1.0-1"]
    lines += [f"depend = {dep}" for dep in depends]
    lines += [f"provides = {p}" for p in provides]
    (d / ".PKGINFO").write_text("\n".join(lines) + "\n", encoding="utf-8")
    (d / ".MTREE").write_bytes(gz(MTREE))
    if buildinfo is not None:
        (d / ".BUILDINFO").write_text(buildinfo, encoding="utf-8")
    return d


def test_parse_text_fields():
    info = PkgInfo.parse_text(PKGINFO)
    assert info.pkgname == "bash"
    assert info.pkgver == "5.2.026-2"
    assert info.builddate == 1706812345
    assert info.size == 9437184
    assert info.arch == ["x86_64"]
    assert info.provides == ["sh"]
    assert info.depend == ["readline>=7.0", "libreadline.so=8-64", "glibc", "ncurses"]
    assert info.optdepend == ["bash-completion: for tab completion"]
    assert info.extra == {"backup": ["etc/bash.bashrc"]}


def test_parse_rejects_malformed_lines():
    with pytest.raises(PkgInfoError):
        PkgInfo.parse_text("pkgname bash\n")
    with pytest.raises(PkgInfoError):
        PkgInfo.parse_text("size = huge\n")


def test_parse_missing_file(tmp_path):
    with pytest.raises(PkgInfoError):
        PkgInfo.parse(str(tmp_path / ".PKGINFO"))


def test_parse_invalid_utf8(tmp_path):
    path = tmp_path / ".PKGINFO"
    path.write_bytes(b"pkgname = \xff\xfe\n")
    with pytest.raises(PkgInfoError):
        PkgInfo.parse(str(path))


def test_buildinfo_fields():
    info = BuildInfo.parse_text(BUILDINFO)
    assert info.format == 2
    assert info.builddate == 1706812345
    assert info.pkgname == "bash"
    assert info.pkgarch == ["x86_64"]
    assert info.buildenv == ["!distcc", "color"]
    assert info.options == ["strip", "!debug"]
    assert info.installed == ["glibc-2.39-1-x86_64", "readline-8.2.010-1-x86_64"]
    assert info.buildtoolver == "1:1.1.0-1-any"
    assert info.extra == {}


def test_buildinfo_bad_format():
    with pytest.raises(PkgInfoError):
        BuildInfo.parse_text("format = two\n")


def test_mtree_applies_set_and_unset():
    mtree = MTree.parse_text(MTREE)
    assert mtree.paths() == [
        "./.BUILDINFO", "./.PKGINFO", "./usr", "./usr/bin/bash", "./usr/share/doc",
    ]
    entries = dict(mtree.entries)
    assert entries["./.PKGINFO"]["mode"] == "644"
    assert entries["./usr/bin/bash"]["mode"] == "755"
    assert entries["./usr/bin/bash"]["size"] == "1100000"
    assert entries["./usr"]["type"] == "dir"
    assert "mode" not in entries["./usr/share/doc"]
    assert len(mtree) == 5


def test_mtree_parse_gzip_file(tmp_path):
    path = tmp_path / ".MTREE"
    path.write_bytes(gz(MTREE))
    assert len(MTree.parse(str(path))) == 5


def test_mtree_rejects_uncompressed_data(tmp_path):
    path = tmp_path / ".MTREE"
    path.write_text(MTREE, encoding="utf-8")
    with pytest.raises(PkgInfoError):
        MTree.parse(str(path))
    with pytest.raises(PkgInfoError):
        MTree.parse_bytes(MTREE.encode("utf-8"), "x")


def test_from_archive_gzip(tmp_path):
    path = write_archive(tmp_path / "bash-5.2.026-2-x86_64.pkg.tar.gz", PKGINFO)
    assert PkgInfo.from_archive(str(path)).pkgname == "bash"


def test_from_archive_zstd(tmp_path):
    path = write_archive(tmp_path / "bash-5.2.026-2-x86_64.pkg.tar.zst", PKGINFO)
    info = PkgInfo.from_archive(str(path))
    assert info.pkgname == "bash"
    assert "glibc" in info.depend


def test_read_archive_members_strips_leading_dot_slash(tmp_path):
    path = tmp_path / "x.pkg.tar.zst"
    raw = tar_bytes({"./.PKGINFO": b"pkgname = x\n"})
    path.write_bytes(zstandard.ZstdCompressor().compress(raw))
    assert read_archive_members(str(path)) == {".PKGINFO": b"pkgname = x\n"}


def test_from_archive_without_pkginfo(tmp_path):
    path = tmp_path / "empty.pkg.tar.gz"
    with tarfile.open(path, "w:gz"):
        pass
    with pytest.raises(PkgInfoError):
        PkgInfo.from_archive(str(path))


def test_corrupt_zstd_archive(tmp_path):
    path = tmp_path / "broken-1-1-x86_64.pkg.tar.zst"
    path.write_bytes(b"not a zstd frame")
    with pytest.raises(PkgInfoError):
        PkgInfo.from_archive(str(path))


def test_is_valid_dir(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(PkgInfoError):
        is_valid_dir(str(empty))
    nopkginfo = tmp_path / "nopkginfo"
    nopkginfo.mkdir()
    (nopkginfo / ".MTREE").write_bytes(gz(MTREE))
    with pytest.raises(PkgInfoError):
        is_valid_dir(str(nopkginfo))
    nomtree = tmp_path / "nomtree"
    nomtree.mkdir()
    (nomtree / ".PKGINFO").write_text("pkgname = nomtree\n", encoding="utf-8")
    with pytest.raises(PkgInfoError, match=".MTREE"):
        is_valid_dir(str(nomtree))
    is_valid_dir(str(write_pkgdir(tmp_path, "ok")))


def test_pkg_from_dir(tmp_path):
    d = write_pkgdir(tmp_path, "bash", depends=["glibc"], buildinfo=BUILDINFO)
    pkg = Pkg.from_dir(str(d))
    assert pkg.pkginfo.pkgname == "bash"
    assert pkg.pkginfo.depend == ["glibc"]
    assert pkg.buildinfo.format == 2
    assert len(pkg.mtree) == 5
    assert sorted(pkg.files) == sorted(
        str(d / f) for f in (".BUILDINFO", ".MTREE", ".PKGINFO")
    )


def test_pkg_from_dir_buildinfo_is_optional(tmp_path):
    d = write_pkgdir(tmp_path, "glibc")
    assert Pkg.from_dir(str(d)).buildinfo is None
    (d / ".BUILDINFO").write_text("format = broken\n", encoding="utf-8")
    assert Pkg.from_dir(str(d)).buildinfo is None


def test_pkg_from_archive(tmp_path):
    path = write_archive(tmp_path / "bash-5.2.026-2-x86_64.pkg.tar.zst", PKGINFO,
                         buildinfo=BUILDINFO)
    pkg = Pkg.from_archive(str(path))
    assert pkg.pkginfo.pkgname == "bash"
    assert pkg.buildinfo.installed[0] == "glibc-2.39-1-x86_64"
    assert "./usr/bin/bash" in pkg.files


def test_pkg_from_archive_requires_mtree(tmp_path):
    path = write_archive(tmp_path / "bash-1-1-x86_64.pkg.tar.zst", PKGINFO, mtree=None)
    with pytest.raises(PkgInfoError, match=".MTREE"):
        Pkg.from_archive(str(path))


def test_pkgdir_database(tmp_path):
    write_pkgdir(tmp_path, "bash", depends=["readline>=7", "glibc"], provides=["sh"])
    write_pkgdir(tmp_path, "readline", depends=["glibc"])
    write_pkgdir(tmp_path, "glibc")
    write_archive(tmp_path / "ncurses-6.4-1-x86_64.pkg.tar.gz", "pkgname = ncurses\n")
    write_archive(tmp_path / "zlib-1.3-1-x86_64.pkg.tar.zst",
                  "pkgname = zlib\ndepend = glibc\n")
    (tmp_path / "zlib-1.3-1-x86_64.pkg.tar.zst.sig").write_bytes(b"sig")
    (tmp_path / "broken-1-1-x86_64.pkg.tar.zst").write_bytes(b"not a tarball")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    db = PkgDirDatabase(str(tmp_path))
    assert sorted(db.infos) == ["bash", "glibc", "ncurses", "readline", "zlib"]
    assert db.depends_of("bash") == ["readline>=7", "glibc"]
    assert db.depends_of("readline>=7") == ["glibc"]
    assert db.depends_of("zlib") == ["glibc"]
    assert db.is_known("ncurses")
    assert not db.is_known("broken")
    assert db.search(["^sh$"]) == ["bash"]


def test_pkgdir_database_missing_directory(tmp_path):
    with pytest.raises(PkgInfoError):
        PkgDirDatabase(str(tmp_path / "nope"))


def test_pkgdir_database_skips_stray_directories(tmp_path):
    write_pkgdir(tmp_path, "glibc")
    (tmp_path / "empty").mkdir()
    anon = tmp_path / "anon"
    anon.mkdir()
    (anon / ".PKGINFO").write_text("pkgver = 1\n", encoding="utf-8")
    (anon / ".MTREE").write_bytes(gz(MTREE))
    garbled = tmp_path / "garbled"
    garbled.mkdir()
    (garbled / ".PKGINFO").write_text("not a pkginfo\n", encoding="utf-8")
    (garbled / ".MTREE").write_bytes(gz(MTREE))

    db = PkgDirDatabase(str(tmp_path))
    assert list(db.infos) == ["glibc"]
