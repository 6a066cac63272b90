from __future__ import annotations

import argparse
import getpass
import logging
from pathlib import Path
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .lib.trust import TrustFailure, TrustGate, read_signature_block, sign_artifact
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)


def load_private_key(path: str, password: Optional[str] = None):
    data = Path(path).read_bytes()
    return serialization.load_pem_private_key(data, password=password.encode("utf-8") if password else None)


def load_chain(path: str) -> List[x509.Certificate]:
    """PEM bundle, signing certificate first."""
    return x509.load_pem_x509_certificates(Path(path).read_bytes())


def cmd_sign(args: argparse.Namespace) -> int:
    password = getpass.getpass("Key password: ") if args.ask_password else None
    key = load_private_key(args.key, password)
    chain = load_chain(args.chain)
    for artifact in args.artifacts:
        block = sign_artifact(Path(artifact), key, chain, signer=args.signer or "")
        logger.info("Signed %s (%s, %s)", artifact, block.algorithm, block.artifact_hash)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    gate = TrustGate.from_paths(args.roots)
    failed = 0
    for artifact in args.artifacts:
        try:
            block = gate.verify(Path(artifact))
        except (TrustFailure, OSError) as e:
            logger.error("UNTRUSTED %s: %s", artifact, e)
            failed += 1
            continue
        logger.info("OK %s (signer=%s)", artifact, block.signer)
    return 1 if failed else 0


def cmd_show(args: argparse.Namespace) -> int:
    for artifact in args.artifacts:
        found = read_signature_block(Path(artifact))
        if found is None:
            print(f"{artifact}: not signed")
            continue
        payload_len, block = found
        print(f"{artifact}: payload={payload_len} bytes signer={block.signer!r}")
        print(f"  algorithm={block.algorithm} hash={block.artifact_hash} timestamp={block.timestamp}")
        print(f"  certificates={len(block.certificates)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="prereq-sign", description="Sign and check bootstrap component artifacts.")
    p.add_argument("--log", default=None, help="Also log to this file")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("sign", help="Embed a signature block into artifacts")
    s.add_argument("--key", required=True, help="PEM private key of the signing certificate")
    s.add_argument("--chain", required=True, help="PEM bundle: signing certificate first, then intermediates")
    s.add_argument("--signer", default=None, help="Signer label (default: certificate subject)")
    s.add_argument("--ask-password", action="store_true", help="Prompt for the private key password")
    s.add_argument("artifacts", nargs="+")
    s.set_defaults(func=cmd_sign)

    v = sub.add_parser("verify", help="Check artifacts against trusted roots")
    v.add_argument("--roots", action="append", required=True, help="Trusted root PEM file or directory")
    v.add_argument("artifacts", nargs="+")
    v.set_defaults(func=cmd_verify)

    sh = sub.add_parser("show", help="Print the embedded signature block")
    sh.add_argument("artifacts", nargs="+")
    sh.set_defaults(func=cmd_show)

    args = p.parse_args(argv)
    if args.log:
        configure_logging(log_path=args.log)
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    try:
        return args.func(args)
    except TrustFailure as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
