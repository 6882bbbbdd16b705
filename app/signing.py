"""
Last.fm request signing.

The service recomputes api_sig from the same parameters, so ordering and
concatenation must match exactly: keys sorted, key+value pairs glued together
with no separators, shared secret appended, md5 hex digest.
"""

from __future__ import annotations
import hashlib
from dataclasses import dataclass
from typing import Mapping

from uri import percent_encode

API_ROOT = "https://ws.audioscrobbler.com/2.0/"

# Never part of the signed string
_UNSIGNED = ("api_sig", "format")


def _sorted_items(params: Mapping[str, str]) -> list[tuple[str, str]]:
    # str ordering is code-point ordering, which matches UTF-8 byte ordering
    return sorted(params.items(), key=lambda kv: kv[0])


def sign(params: Mapping[str, str], secret: str) -> str:
    raw = "".join(f"{k}{v}" for k, v in _sorted_items(params) if k not in _UNSIGNED)
    # md5 is what the API mandates for signatures, not a security choice
    return hashlib.md5((raw + secret).encode("utf-8"), usedforsecurity=False).hexdigest()


def canonical_query(params: Mapping[str, str], sig: str | None = None) -> str:
    parts = [f"{percent_encode(k)}={percent_encode(v)}"
             for k, v in _sorted_items(params) if k not in _UNSIGNED]
    parts.append("format=json")
    if sig:
        parts.append(f"api_sig={sig}")
    return "&".join(parts)


def build_uri(params: Mapping[str, str], sig: str | None = None) -> str:
    return f"{API_ROOT}?{canonical_query(params, sig)}"


def build_form(params: Mapping[str, str], sig: str | None = None) -> str:
    return canonical_query(params, sig)


@dataclass(frozen=True)
class SignedRequest:
    params: tuple[tuple[str, str], ...]
    signature: str
    body: str


def signed_request(params: Mapping[str, str], secret: str) -> SignedRequest:
    sig = sign(params, secret)
    return SignedRequest(
        params=tuple(_sorted_items(params)),
        signature=sig,
        body=build_form(params, sig),
    )
