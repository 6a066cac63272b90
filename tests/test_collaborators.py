"""Tests for presence registry, package manager and parent package collaborators."""
from __future__ import annotations

import sys
import zipfile
from pathlib import Path

from prereq_bootstrap.lib import package_manager as pm_mod
from prereq_bootstrap.lib.command import CmdResult, ProcessRunner, run_cmd, split_parameters
from prereq_bootstrap.lib.package import ParentPackage
from prereq_bootstrap.lib.package_manager import CommandPackageManager
from prereq_bootstrap.lib.presence import PresenceRegistry


class TestPresenceRegistry:
    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "presence.yaml")
        PresenceRegistry(path).mark_present("HKLM\\Software\\Foo")
        assert PresenceRegistry(path).key_present("hklm/software/foo")

    def test_empty_key_is_never_present(self):
        reg = PresenceRegistry()
        reg.mark_present("")
        assert not reg.key_present("")
        assert not reg.key_present("   ")


class TestPackageManager:
    def test_argv_template_and_split_parameters(self):
        mgr = CommandPackageManager(["msiexec", "/i", "{path}", "/qn"])
        argv = mgr.build_argv(Path("C:/tmp/foo.msi"), 'TARGETDIR="C:\\apps\\x y" ALLUSERS=1')
        assert argv == ["msiexec", "/i", str(Path("C:/tmp/foo.msi")), "/qn", 'TARGETDIR="C:\\apps\\x y"', "ALLUSERS=1"]

    def test_install_returns_status(self, monkeypatch):
        seen = []

        def fake_run_cmd(argv, check=True, env=None, cwd=None, dry_run=False):
            seen.append(list(argv))
            return CmdResult(argv=list(argv), returncode=1603, stdout="", stderr="")

        monkeypatch.setattr(pm_mod, "run_cmd", fake_run_cmd)
        progress = []
        status = CommandPackageManager(["pm", "{path}"]).install(Path("foo.msi"), "", progress.append)
        assert status == 1603
        assert seen == [["pm", "foo.msi"]]
        assert progress == [None, 100]

    def test_split_parameters(self):
        assert split_parameters("") == []
        assert split_parameters("/quiet /norestart") == ["/quiet", "/norestart"]


class TestParentPackage:
    def test_streams_and_properties(self, tmp_path):
        path = tmp_path / "parent.msi"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("Binary/foo.msi", b"stream")
            zf.writestr("Property/BootstrapManifest", b"foo.msi\n")

        pkg = ParentPackage(path)
        assert pkg.folder == tmp_path.resolve()
        assert pkg.read_property("BootstrapManifest") == b"foo.msi\n"
        assert pkg.read_property("Missing") is None
        out = pkg.extract_stream("foo.msi", tmp_path / "x" / "foo.msi")
        assert out.read_bytes() == b"stream"

    def test_not_a_container(self, tmp_path):
        path = tmp_path / "parent.msi"
        path.write_bytes(b"not a zip")
        assert ParentPackage(path).read_stream("foo.msi") is None


class TestProcessRunner:
    def test_undecodable_output_does_not_fail_the_install(self):
        script = "import sys; sys.stdout.buffer.write(b'Installation r\\xe9ussie \\xff\\n')"
        assert ProcessRunner().run([sys.executable, "-c", script]) == 0

        res = run_cmd([sys.executable, "-c", script], check=False)
        assert res.stdout.startswith("Installation r")

    def test_dry_run_executes_nothing(self, tmp_path):
        marker = tmp_path / "ran"
        runner = ProcessRunner(dry_run=True)
        script = f"open({str(marker)!r}, 'w').close()"
        assert runner.run([sys.executable, "-c", script]) == 0
        assert runner.start([sys.executable, "-c", script]) is None
        assert not marker.exists()
