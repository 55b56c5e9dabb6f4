"""
auth/signing.py -- Signed links and route parameter integrity.

A page that renders a link such as /profile/7?tab=billing can sign it with
sign_url(). The link then carries hash=<hex digest>. When the link comes
back, the gateway recomputes the digest from the path and query string it
actually received; any edit to either changes the digest.

Scheme:
  params    = {"path": <url path>, "query": {name: [values in order], ...}}
              (the hash field itself is excluded from query)
  canonical = json.dumps(params, sort_keys=True, separators=(",", ":"),
              ensure_ascii=False) encoded as UTF-8
  digest    = HMAC-SHA256(SECRET_KEY, canonical).hexdigest()

The path and the query live under separate keys so a query parameter can
never masquerade as the path. Keys are sorted; repeated values keep their
order because ?a=1&a=2 and ?a=2&a=1 can mean different things to a handler.

compute_hash() is a pure function of (params, secret). Comparison uses
hmac.compare_digest so timing does not leak how many leading characters match.

Layer rule: no imports from api/, web/ or gateway/.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Iterable, Mapping, Sequence
from urllib.parse import quote, urlencode


def compute_hash(params: Mapping, secret: str) -> str:
    """Return the hex HMAC-SHA256 of the canonical serialization of params."""
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hmac.new(secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def compare_constant_time(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def request_parameters(path: str, query_items: Iterable[tuple[str, str]], exclude: str) -> dict:
    """Build the canonical parameter set for a path and its query pairs.

    exclude names the hash field, which is never part of what it signs.
    """
    query: dict[str, list[str]] = {}
    for name, value in query_items:
        if name == exclude:
            continue
        query.setdefault(name, []).append(value)
    return {"path": path, "query": query}


def sign_url(
    path: str,
    query: Mapping[str, str | Sequence[str]] | None,
    secret: str,
    field: str = "hash",
) -> str:
    """Return path?query&<field>=<digest> for a link the gateway will accept.

    Single values and sequences of values are both accepted per key. The
    digest covers the decoded path; the emitted path is percent-encoded, so a
    space, "?" or "#" in it survives the round trip through the browser.
    """
    pairs: list[tuple[str, str]] = []
    for name, value in (query or {}).items():
        if isinstance(value, str):
            pairs.append((name, value))
        else:
            pairs.extend((name, v) for v in value)
    digest = compute_hash(request_parameters(path, pairs, exclude=field), secret)
    pairs.append((field, digest))
    return f"{quote(path)}?{urlencode(pairs)}"
