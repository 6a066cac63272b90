"""Trust gate: embedded code-signing verification for acquired artifacts.

An artifact carries its signature appended to the payload:

    payload || signature JSON || u64 length (little endian) || b"PRBSIG01"

The JSON block names the SHA-256 of the payload, the signing certificate
chain (PEM, leaf first) and the leaf key's signature over the hash string.
Executables and packages keep working with the trailer attached, the same
way Authenticode overlays do.

Policy:
- the leaf certificate must allow Code Signing (extended key usage)
- every certificate in the path must be inside its validity window
- every issuing certificate must be a CA (basic constraints) within its
  path length, and allowed to sign certificates when it carries key usage
- the path must end at one of the configured trusted roots
- revocation is NOT checked; availability of the installer wins over
  revocation freshness
- anything other than "explicitly valid" is untrusted
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

logger = logging.getLogger(__name__)

SIG_MAGIC = b"PRBSIG01"
SIG_VERSION = "1.0"
TRAILER = struct.Struct("<Q8s")
MAX_BLOCK_SIZE = 1024 * 1024
MAX_CHAIN_DEPTH = 8


class TrustFailure(Exception):
    """Reason an artifact is untrusted. Never surfaced past the gate."""


@dataclass
class SignatureBlock:
    version: str
    algorithm: str
    artifact_hash: str
    signer: str
    timestamp: str
    signature: str
    certificates: List[str] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(
            {
                "version": self.version,
                "algorithm": self.algorithm,
                "artifact_hash": self.artifact_hash,
                "signer": self.signer,
                "timestamp": self.timestamp,
                "signature": self.signature,
                "certificates": self.certificates,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, data: str) -> "SignatureBlock":
        d = json.loads(data)
        return cls(**d)


def _sha256_prefix(path: Path, length: int) -> str:
    h = hashlib.sha256()
    remaining = length
    with path.open("rb") as f:
        while remaining > 0:
            chunk = f.read(min(1024 * 1024, remaining))
            if not chunk:
                break
            h.update(chunk)
            remaining -= len(chunk)
    return f"sha256:{h.hexdigest()}"


def read_signature_block(path: Path) -> Optional[Tuple[int, SignatureBlock]]:
    """Return (payload_length, block), or None when the file carries no block."""

    size = path.stat().st_size
    if size < TRAILER.size:
        return None
    with path.open("rb") as f:
        f.seek(size - TRAILER.size)
        block_len, magic = TRAILER.unpack(f.read(TRAILER.size))
        if magic != SIG_MAGIC:
            return None
        if block_len <= 0 or block_len > MAX_BLOCK_SIZE or block_len > size - TRAILER.size:
            raise TrustFailure(f"corrupt signature trailer (length={block_len})")
        payload_len = size - TRAILER.size - block_len
        f.seek(payload_len)
        raw = f.read(block_len)
    try:
        return payload_len, SignatureBlock.from_json(raw.decode("utf-8"))
    except (ValueError, TypeError, UnicodeDecodeError) as e:
        raise TrustFailure(f"unreadable signature block: {e}") from e


def _algorithm_name(key) -> str:
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return "rsa-pkcs1v15-sha256"
    if isinstance(key, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return "ecdsa-sha256"
    if isinstance(key, (ed25519.Ed25519PrivateKey, ed25519.Ed25519PublicKey)):
        return "ed25519"
    raise TrustFailure(f"unsupported key type {type(key).__name__}")


def _sign_with_key(private_key, data: bytes) -> bytes:
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return private_key.sign(data, ec.ECDSA(hashes.SHA256()))
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.sign(data)
    raise TrustFailure(f"unsupported key type {type(private_key).__name__}")


def _verify_with_key(public_key, signature: bytes, data: bytes) -> None:
    if isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
    elif isinstance(public_key, ed25519.Ed25519PublicKey):
        public_key.verify(signature, data)
    else:
        raise TrustFailure(f"unsupported key type {type(public_key).__name__}")


def sign_artifact(
    path: Path,
    private_key,
    chain: Sequence[x509.Certificate],
    *,
    signer: str = "",
) -> SignatureBlock:
    """Append (or replace) the embedded signature block of an artifact."""

    path = Path(path)
    if not chain:
        raise ValueError("certificate chain must contain at least the signing certificate")

    existing = read_signature_block(path)
    if existing is not None:
        payload_len = existing[0]
        with path.open("r+b") as f:
            f.truncate(payload_len)
    else:
        payload_len = path.stat().st_size

    artifact_hash = _sha256_prefix(path, payload_len)
    signature = _sign_with_key(private_key, artifact_hash.encode("utf-8"))

    block = SignatureBlock(
        version=SIG_VERSION,
        algorithm=_algorithm_name(private_key),
        artifact_hash=artifact_hash,
        signer=signer or chain[0].subject.rfc4514_string(),
        timestamp=datetime.now(timezone.utc).isoformat(),
        signature=base64.b64encode(signature).decode("ascii"),
        certificates=[c.public_bytes(serialization.Encoding.PEM).decode("ascii") for c in chain],
    )
    raw = block.to_json().encode("utf-8")
    with path.open("ab") as f:
        f.write(raw)
        f.write(TRAILER.pack(len(raw), SIG_MAGIC))
    return block


def load_trust_roots(paths: Iterable[str]) -> List[x509.Certificate]:
    """Load PEM certificates from files, or from *.pem/*.crt/*.cer inside directories."""

    roots: List[x509.Certificate] = []
    for ref in paths:
        p = Path(ref).expanduser()
        if p.is_dir():
            files = sorted(f for f in p.iterdir() if f.suffix.lower() in {".pem", ".crt", ".cer"})
        elif p.is_file():
            files = [p]
        else:
            logger.warning("Trust root not found: %s", p)
            continue
        for f in files:
            roots.extend(x509.load_pem_x509_certificates(f.read_bytes()))
    logger.info("Loaded %d trusted root certificate(s)", len(roots))
    return roots


def _check_validity(cert: x509.Certificate, now: datetime) -> None:
    if now < cert.not_valid_before_utc or now > cert.not_valid_after_utc:
        raise TrustFailure(f"certificate outside validity window: {cert.subject.rfc4514_string()}")


def _require_code_signing(cert: x509.Certificate) -> None:
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound as e:
        raise TrustFailure("signing certificate has no extended key usage") from e
    if ExtendedKeyUsageOID.CODE_SIGNING not in eku:
        raise TrustFailure("signing certificate is not valid for code signing")


def _require_issuer(cert: x509.Certificate, intermediates_below: int) -> None:
    name = cert.subject.rfc4514_string()
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound as e:
        raise TrustFailure(f"issuer is not a CA: {name}") from e
    if not bc.ca:
        raise TrustFailure(f"issuer is not a CA: {name}")
    if bc.path_length is not None and intermediates_below > bc.path_length:
        raise TrustFailure(f"path length constraint of {name} exceeded")
    try:
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        return
    if not usage.key_cert_sign:
        raise TrustFailure(f"issuer may not sign certificates: {name}")


def _find_issuer(cert: x509.Certificate, candidates: Sequence[x509.Certificate]) -> Optional[x509.Certificate]:
    for candidate in candidates:
        if candidate.subject != cert.issuer:
            continue
        try:
            cert.verify_directly_issued_by(candidate)
            return candidate
        except (ValueError, TypeError, InvalidSignature):
            continue
    return None


class TrustGate:
    def __init__(self, roots: Sequence[x509.Certificate]) -> None:
        self._roots = list(roots)
        self._root_prints = {r.fingerprint(hashes.SHA256()) for r in self._roots}

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> "TrustGate":
        return cls(load_trust_roots(paths))

    def _check_chain(self, chain: Sequence[x509.Certificate], now: datetime) -> None:
        current = chain[0]
        pool = list(chain[1:])
        # intermediate CAs between the next issuer and the leaf
        below = 0
        for _ in range(MAX_CHAIN_DEPTH):
            _check_validity(current, now)
            if current.fingerprint(hashes.SHA256()) in self._root_prints:
                return
            root = _find_issuer(current, self._roots)
            if root is not None:
                _check_validity(root, now)
                _require_issuer(root, below)
                return
            issuer = _find_issuer(current, pool)
            if issuer is None:
                raise TrustFailure("certificate chain does not end at a trusted root")
            _require_issuer(issuer, below)
            pool.remove(issuer)
            current = issuer
            below += 1
        raise TrustFailure("certificate chain too long")

    def verify(self, path: Path) -> SignatureBlock:
        """Raise TrustFailure unless path carries a valid embedded signature."""

        found = read_signature_block(path)
        if found is None:
            raise TrustFailure("artifact is not signed")
        payload_len, block = found

        if not block.certificates:
            raise TrustFailure("signature block carries no certificates")
        try:
            chain = [x509.load_pem_x509_certificate(pem.encode("ascii")) for pem in block.certificates]
            signature = base64.b64decode(block.signature, validate=True)
        except ValueError as e:
            raise TrustFailure(f"malformed signature block: {e}") from e

        actual = _sha256_prefix(path, payload_len)
        if actual != block.artifact_hash:
            raise TrustFailure(f"payload hash mismatch: expected {block.artifact_hash[:20]}..., got {actual[:20]}...")

        leaf = chain[0]
        _require_code_signing(leaf)
        try:
            _verify_with_key(leaf.public_key(), signature, block.artifact_hash.encode("utf-8"))
        except InvalidSignature as e:
            raise TrustFailure("signature does not match signing certificate") from e

        self._check_chain(chain, datetime.now(timezone.utc))
        return block

    def is_trusted(self, path) -> bool:
        """Fail-closed boolean verdict. Missing files are untrusted without verification."""

        if not path:
            return False
        p = Path(path)
        if not p.is_file():
            return False
        try:
            block = self.verify(p)
        except TrustFailure as e:
            logger.info("Untrusted artifact %s: %s", p, e)
            return False
        except Exception as e:
            logger.warning("Trust verification error for %s: %s", p, e)
            return False
        logger.info("Trusted artifact %s (signer=%s)", p, block.signer)
        return True
