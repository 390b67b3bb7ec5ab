"""
Sender address parsing and canonical domain resolution.

canonical_domain() is idempotent: feeding it its own output returns the same
value.
"""

from __future__ import annotations

import re

ANGLE_ADDRESS_RE = re.compile(r"<([^>]+)>")
BARE_ADDRESS_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
DISPLAY_NAME_RE = re.compile(r"^(.*?)\s*<[^>]+>$")

IGNORED_PREFIXES = frozenset(
    {
        "www",
        "noreply",
        "no-reply",
        "info",
        "support",
        "notifications",
        "accounts",
        "team",
        "hello",
        "mail",
        "updates",
        "announce",
        "auth",
        "auths",
        "app",
    }
)

MULTIPART_SUFFIXES = frozenset(
    {"co.uk", "com.au", "co.jp", "com.br", "com.gh", "com.ng", "co.za"}
)

# Bulk-mail hosts that map straight to their parent brand.
ALIAS_EXACT = {
    "facebookmail.com": "facebook.com",
    "amazonses.com": "amazon.com",
    "reply.github.com": "github.com",
    "githubmail.com": "github.com",
    "mail.twitter.com": "twitter.com",
    "e.uber.com": "uber.com",
    "mail.netflix.com": "netflix.com",
}

ALIAS_SUFFIX = {
    "github.com": "github.com",
    "twitter.com": "twitter.com",
    "uber.com": "uber.com",
    "netflix.com": "netflix.com",
}


def extract_email_address(value: str | None) -> str | None:
    """Pull the address out of a From header; the bracketed form wins."""
    if not value:
        return None
    bracketed = ANGLE_ADDRESS_RE.search(value)
    if bracketed:
        candidate = bracketed.group(1).strip()
        if "@" in candidate:
            return candidate.lower()
    bare = BARE_ADDRESS_RE.search(value)
    return bare.group(0).lower() if bare else None


def extract_display_name(value: str | None) -> str | None:
    if not value:
        return None
    match = DISPLAY_NAME_RE.match(value.strip())
    if not match:
        return None
    name = match.group(1).strip().strip("\"'").strip()
    return name or None


def _host_of(address_or_host: str) -> str:
    host = address_or_host.rsplit("@", 1)[-1]
    return host.strip().strip(".").lower()


def _alias_for(host: str) -> str | None:
    if host in ALIAS_EXACT:
        return ALIAS_EXACT[host]
    for suffix, brand in ALIAS_SUFFIX.items():
        if host == suffix or host.endswith("." + suffix):
            return brand
    return None


def _registrable_length(labels: list[str]) -> int:
    """Labels in the registrable domain: one more under a multi-part suffix like co.uk."""
    if len(labels) >= 3 and ".".join(labels[-2:]) in MULTIPART_SUFFIXES:
        return 3
    return 2


def canonicalize_host(host: str) -> str | None:
    """Reduce a mail host to its registrable brand domain."""
    host = _host_of(host)
    if not host:
        return None

    alias = _alias_for(host)
    if alias:
        return alias

    labels = [label for label in host.split(".") if label]
    if not labels:
        return None

    while len(labels) > _registrable_length(labels) and labels[0] in IGNORED_PREFIXES:
        labels.pop(0)

    canonical = ".".join(labels[-_registrable_length(labels) :])
    return _alias_for(canonical) or canonical


def canonical_domain(sender: str | None) -> str | None:
    """Canonical domain for a From header, bare address or host."""
    if not sender:
        return None
    address = extract_email_address(sender)
    if address:
        return canonicalize_host(address)
    if "@" in sender or " " in sender.strip():
        return None
    return canonicalize_host(sender)
