"""Shared fixtures: a throwaway PKI and fake collaborators."""
from __future__ import annotations

import datetime as dt
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from prereq_bootstrap.lib.fetch import NOT_200, FetchError
from prereq_bootstrap.lib.trust import TrustGate, sign_artifact


def _name(cn: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])


def make_cert(
    subject: str,
    key,
    *,
    issuer_name: Optional[str] = None,
    issuer_key=None,
    ca: bool = False,
    path_length: Optional[int] = None,
    key_usage: Optional[x509.KeyUsage] = None,
    code_signing: bool = True,
    not_before: Optional[dt.datetime] = None,
    not_after: Optional[dt.datetime] = None,
) -> x509.Certificate:
    now = dt.datetime.now(dt.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(_name(issuer_name or subject))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - dt.timedelta(days=1))
        .not_valid_after(not_after or now + dt.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=path_length if ca else None), critical=True)
    )
    if key_usage is not None:
        builder = builder.add_extension(key_usage, critical=True)
    if not ca and code_signing:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CODE_SIGNING]), critical=False
        )
    elif not ca:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
    return builder.sign(issuer_key or key, hashes.SHA256())


@dataclass
class Pki:
    root_key: object
    root: x509.Certificate
    leaf_key: object
    leaf: x509.Certificate
    root_pem: Path

    def sign(self, path: Path, data: bytes = b"payload") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        sign_artifact(path, self.leaf_key, [self.leaf])
        return path

    def gate(self) -> TrustGate:
        return TrustGate([self.root])


@pytest.fixture(scope="session")
def pki(tmp_path_factory) -> Pki:
    root_key = ec.generate_private_key(ec.SECP256R1())
    root = make_cert("Test Root", root_key, ca=True)
    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf = make_cert("Test Publisher", leaf_key, issuer_name="Test Root", issuer_key=root_key)

    root_pem = tmp_path_factory.mktemp("pki") / "root.pem"
    root_pem.write_bytes(root.public_bytes(serialization.Encoding.PEM))
    return Pki(root_key=root_key, root=root, leaf_key=leaf_key, leaf=leaf, root_pem=root_pem)


@pytest.fixture(scope="session")
def rogue_pki(tmp_path_factory) -> Pki:
    """A second, untrusted PKI."""
    root_key = ec.generate_private_key(ec.SECP256R1())
    root = make_cert("Rogue Root", root_key, ca=True)
    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf = make_cert("Rogue Publisher", leaf_key, issuer_name="Rogue Root", issuer_key=root_key)
    root_pem = tmp_path_factory.mktemp("rogue") / "root.pem"
    root_pem.write_bytes(root.public_bytes(serialization.Encoding.PEM))
    return Pki(root_key=root_key, root=root, leaf_key=leaf_key, leaf=leaf, root_pem=root_pem)


class FakeFetcher:
    """Serves bytes from a dict keyed by URL; records every request."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None) -> None:
        self.files = dict(files or {})
        self.calls: List[str] = []

    def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self.files:
            raise FetchError(NOT_200, url, "HTTP 404")
        return self.files[url]

    def download(self, url, destination: Path, *, progress=None, should_abort=None) -> int:
        data = self.fetch(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
        if progress is not None:
            progress(100)
        return len(data)


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


class ScriptedChild:
    """Stands in for a Popen: runs one scripted action per wait() call.

    An action returning True means the child has exited.
    """

    def __init__(self, actions: List[Callable[[], bool]]) -> None:
        self.actions = list(actions)
        self.waits = 0

    def wait(self, timeout: Optional[float] = None) -> int:
        self.waits += 1
        if self.actions:
            exited = self.actions.pop(0)()
            if exited:
                return 0
            raise subprocess.TimeoutExpired("child", timeout)
        return 0


@dataclass
class FakeRunner:
    """Records run/start calls. ``statuses`` maps an executable name to its exit status."""

    statuses: Dict[str, int] = field(default_factory=dict)
    calls: List[List[str]] = field(default_factory=list)
    started: List[List[str]] = field(default_factory=list)
    events: Optional[List[str]] = None
    on_start: Optional[Callable[[List[str]], object]] = None
    dry_run: bool = False

    def run(self, argv, *, cwd=None) -> int:
        argv = list(argv)
        self.calls.append(argv)
        name = Path(argv[0]).name
        if self.events is not None:
            self.events.append(f"run:{name}")
        return self.statuses.get(name, 0)

    def start(self, argv, *, cwd=None):
        argv = list(argv)
        self.started.append(argv)
        if self.events is not None:
            self.events.append(f"start:{Path(argv[0]).name}")
        if self.dry_run:
            return None
        if self.on_start is not None:
            return self.on_start(argv)
        return object()
