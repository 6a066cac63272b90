"""Tests for candidate ordering and trust gating in the source resolver."""
from __future__ import annotations

import io
import zipfile

import pytest

from conftest import FakeFetcher
from prereq_bootstrap.errors import Cancelled
from prereq_bootstrap.lib.package import ParentPackage
from prereq_bootstrap.lib.resolver import (
    BOOTSTRAP_DIR,
    EMBEDDED,
    MIRROR,
    PACKAGE_DIR,
    SourceResolver,
    localized_name,
)


def _signed_bytes(pki, tmp_path, data: bytes = b"payload") -> bytes:
    return pki.sign(tmp_path / "scratch" / "signed.bin", data).read_bytes()


def _package(path, streams):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in streams.items():
            zf.writestr(f"Binary/{name}", data)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(buf.getvalue())
    return ParentPackage(path)


@pytest.fixture
def layout(tmp_path):
    boot = tmp_path / "boot"
    boot.mkdir()
    pkg_dir = tmp_path / "pkg"
    pkg_dir.mkdir()
    package = _package(pkg_dir / "parent.msi", {})
    return {"boot": boot, "pkg_dir": pkg_dir, "package": package, "temp": tmp_path / "temp"}


def _resolver(pki, layout, fetcher, **kw):
    layout["temp"].mkdir(exist_ok=True)
    kw.setdefault("mirrors", ["http://m1.test/", "http://m2.test/"])
    kw.setdefault("canonical_server", "http://canon.test/")
    return SourceResolver(
        trust=pki.gate(),
        fetcher=fetcher,
        bootstrap_dir=layout["boot"],
        package=layout["package"],
        temp_dir=str(layout["temp"]),
        locale_id=1033,
        **kw,
    )


class TestCandidates:
    def test_localized_name(self):
        assert localized_name("foo.msi", 1031) == "foo.1031.msi"
        assert localized_name("README", 1033) == "README.1033"

    def test_order(self, pki, layout, fake_fetcher):
        resolver = _resolver(pki, layout, fake_fetcher)
        got = [(c.kind, c.location, c.name) for c in resolver.candidates("foo.msi", "http://extra.test/")]
        boot, pkg_dir, pkg = str(layout["boot"]), str(layout["package"].folder), str(layout["package"].path)
        assert got == [
            (BOOTSTRAP_DIR, boot, "foo.1033.msi"),
            (BOOTSTRAP_DIR, boot, "foo.msi"),
            (PACKAGE_DIR, pkg_dir, "foo.1033.msi"),
            (PACKAGE_DIR, pkg_dir, "foo.msi"),
            (EMBEDDED, pkg, "foo.1033.msi"),
            (EMBEDDED, pkg, "foo.msi"),
            (MIRROR, "http://extra.test/", "foo.1033.msi"),
            (MIRROR, "http://extra.test/", "foo.msi"),
            (MIRROR, "http://m1.test/", "foo.1033.msi"),
            (MIRROR, "http://m1.test/", "foo.msi"),
            (MIRROR, "http://m2.test/", "foo.1033.msi"),
            (MIRROR, "http://m2.test/", "foo.msi"),
            (MIRROR, "http://canon.test/", "foo.1033.msi"),
            (MIRROR, "http://canon.test/", "foo.msi"),
        ]

    def test_offline_skips_mirrors(self, pki, layout, fake_fetcher):
        resolver = _resolver(pki, layout, fake_fetcher, search_online=False)
        kinds = {c.kind for c in resolver.candidates("foo.msi", "http://extra.test/")}
        assert MIRROR not in kinds

    def test_duplicate_mirrors_evaluated_once(self, pki, layout, fake_fetcher):
        resolver = _resolver(pki, layout, fake_fetcher, mirrors=["http://canon.test"])
        mirrors = [c for c in resolver.candidates("foo.msi") if c.kind == MIRROR]
        assert len(mirrors) == 2


class TestResolve:
    def test_colocated_trusted_file_wins_without_fetch(self, pki, layout, fake_fetcher):
        pki.sign(layout["boot"] / "foo.msi")
        res = _resolver(pki, layout, fake_fetcher).resolve("foo.msi")
        assert res.path == layout["boot"] / "foo.msi"
        assert fake_fetcher.calls == []

    def test_localized_variant_preferred(self, pki, layout, fake_fetcher):
        pki.sign(layout["pkg_dir"] / "foo.msi")
        pki.sign(layout["pkg_dir"] / "foo.1033.msi")
        res = _resolver(pki, layout, fake_fetcher).resolve("foo.msi")
        assert res.path.name == "foo.1033.msi"

    def test_embedded_stream_extracted(self, pki, layout, fake_fetcher, tmp_path):
        layout["package"] = _package(layout["pkg_dir"] / "parent.msi", {"foo.msi": _signed_bytes(pki, tmp_path)})
        resolver = _resolver(pki, layout, fake_fetcher)
        res = resolver.resolve("foo.msi")
        assert res.found
        assert layout["temp"] in res.path.parents
        assert fake_fetcher.calls == []
        resolver.cleanup()
        assert not res.path.exists()

    def test_untrusted_download_deleted_then_next_mirror(self, pki, rogue_pki, layout, tmp_path):
        fetcher = FakeFetcher(
            {
                "http://m1.test/foo.msi": _signed_bytes(rogue_pki, tmp_path, b"evil"),
                "http://m2.test/foo.msi": _signed_bytes(pki, tmp_path, b"good"),
            }
        )
        resolver = _resolver(pki, layout, fetcher)
        res = resolver.resolve("foo.msi")

        assert res.found
        assert res.path.read_bytes().startswith(b"good")
        assert [c.location for c in res.rejected] == ["http://m1.test/"]
        leftovers = [p for p in layout["temp"].rglob("foo.msi") if p != res.path]
        assert leftovers == []
        assert "http://canon.test/foo.msi" not in fetcher.calls

    def test_untrusted_colocated_file_is_kept(self, pki, rogue_pki, layout, fake_fetcher):
        rogue_pki.sign(layout["boot"] / "foo.msi")
        res = _resolver(pki, layout, fake_fetcher, search_online=False).resolve("foo.msi")
        assert not res.found
        assert len(res.rejected) == 1
        assert (layout["boot"] / "foo.msi").exists()

    def test_nothing_found(self, pki, layout, fake_fetcher):
        res = _resolver(pki, layout, fake_fetcher).resolve("foo.msi")
        assert not res.found
        assert res.rejected == []
        assert len(res.tried) == 12

    def test_entry_location_used_as_additional_mirror(self, pki, layout, tmp_path):
        fetcher = FakeFetcher({"http://extra.test/foo.msi": _signed_bytes(pki, tmp_path)})
        res = _resolver(pki, layout, fetcher).resolve("foo.msi", "http://extra.test/")
        assert res.found
        assert fetcher.calls == ["http://extra.test/foo.1033.msi", "http://extra.test/foo.msi"]

    def test_cancelled_before_external_io(self, pki, layout, fake_fetcher):
        resolver = _resolver(pki, layout, fake_fetcher, is_cancelled=lambda: True)
        with pytest.raises(Cancelled):
            resolver.resolve("foo.msi")
        assert fake_fetcher.calls == []
