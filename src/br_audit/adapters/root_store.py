"""
Root store adapter — trusted issuer names for the chain-trust check.

The file holds one canonical distinguished name per line, in the
"O=..., OU=..., CN=..." form produced by format_distinguished_name().
Blank lines are ignored; other lines are taken verbatim apart from the
line terminator, so the names must match byte for byte.

An issuer with no O, OU or CN formats to the empty string. A blank line
is never stored as that name, so such an issuer is never trusted, even
when the list file has blank lines in it.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()


def parse_trusted_issuers(text: str) -> frozenset[str]:
    return frozenset(line.rstrip("\r") for line in text.split("\n") if line.strip())


def _read_trusted_issuers(path: Path) -> frozenset[str]:
    issuers = parse_trusted_issuers(path.read_text(encoding="utf-8"))
    log.info("root_store.loaded", path=str(path), issuers=len(issuers))
    return issuers


def load_trusted_issuers(path: Path) -> Result[frozenset[str]]:
    return Result.from_computation(
        lambda: _read_trusted_issuers(path),
        ErrorCode.IO_ERROR,
        f"Failed to read root CA list from {path}",
    )
