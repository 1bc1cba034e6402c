"""Operator CLI for hashing, signing and checking claim payloads.

A claim file is JSON shaped like::

    {"protocol": "cube", "chainId": 84532,
     "verifyingContract": "0x...", "message": {...}}
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

import httpx

from .errors import ClaimError
from .logging_utils import configure_logging
from .models import ClaimRequest
from .protocols import ClaimProtocol, get_protocol
from .signers import LocalKeySigner, sign_claim
from .typed_data import EIP712Domain, digest, typed_data_payload
from .verifier import recover_signer


def _load_claim(path: Path) -> Tuple[ClaimProtocol, EIP712Domain, ClaimRequest, Dict[str, Any]]:
    try:
        document = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise SystemExit(f"Unable to read claim file {path}: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get("message"), dict):
        raise SystemExit("Claim file must be an object with a `message` mapping")
    protocol = get_protocol(str(document.get("protocol", "")))
    domain = protocol.domain(int(document.get("chainId", 0)), str(document.get("verifyingContract", "")))
    claim = protocol.from_message(document["message"], payment_token=document.get("paymentToken"))
    return protocol, domain, claim, document


def command_digest(args: argparse.Namespace) -> None:
    protocol, domain, claim, _ = _load_claim(args.claim_file)
    message = protocol.to_message(claim)
    result = {
        "protocol": protocol.name,
        "digest": "0x" + digest(domain, protocol.schema, message).hex(),
        "typedData": typed_data_payload(domain, protocol.schema, message),
    }
    print(json.dumps(result, indent=2))


def command_sign(args: argparse.Namespace) -> None:
    if args.api_url:
        _, _, _, document = _load_claim(args.claim_file)
        url = f"{args.api_url.rstrip('/')}/v1/claims/{document['protocol']}/sign"
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(url, json={"message": document["message"]})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SystemExit(f"API POST {url} failed: {exc.response.status_code} {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise SystemExit(f"API request failed: {exc}") from exc
        print(json.dumps(response.json(), indent=2))
        return

    private_key = args.private_key or os.getenv("CLAIM_SIGNER_PRIVATE_KEY")
    if not private_key:
        raise SystemExit("--private-key or CLAIM_SIGNER_PRIVATE_KEY is required to sign locally")
    protocol, domain, claim, _ = _load_claim(args.claim_file)
    signed = asyncio.run(sign_claim(LocalKeySigner(private_key), protocol, domain, claim))
    print(json.dumps(signed.to_dict(), indent=2))


def command_recover(args: argparse.Namespace) -> None:
    protocol, domain, claim, _ = _load_claim(args.claim_file)
    signer = recover_signer(protocol, domain, claim, args.signature)
    result: Dict[str, Any] = {"protocol": protocol.name, "signer": signer}
    if args.expect:
        result["matches"] = signer.lower() == args.expect.lower()
    print(json.dumps(result, indent=2))
    if args.expect and not result["matches"]:
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Signed claim tooling")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"))
    subparsers = parser.add_subparsers(dest="command", required=True)

    digest_parser = subparsers.add_parser("digest", help="Print the EIP-712 digest and typed data of a claim")
    digest_parser.add_argument("claim_file", type=Path)
    digest_parser.set_defaults(func=command_digest)

    sign = subparsers.add_parser("sign", help="Sign a claim locally or through a signing service")
    sign.add_argument("claim_file", type=Path)
    sign.add_argument("--private-key")
    sign.add_argument("--api-url", help="Base URL of a running claim-signing supervisor")
    sign.set_defaults(func=command_sign)

    recover = subparsers.add_parser("recover", help="Recover the signer of a claim signature")
    recover.add_argument("claim_file", type=Path)
    recover.add_argument("signature")
    recover.add_argument("--expect", help="Exit non-zero unless the signer matches this address")
    recover.set_defaults(func=command_recover)

    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(log_level=args.log_level)
    try:
        args.func(args)
    except ClaimError as exc:
        raise SystemExit(f"{exc.reason}: {exc}") from exc


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main(sys.argv[1:])
