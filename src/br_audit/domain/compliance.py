"""
Compliance evaluator — Baseline Requirements checks for one certificate.

Domain layer: pure, stateless, safe to call from any number of threads.
All six rules are evaluated independently on every certificate:

  ValidPeriodTooLong            BR 9.4.1, non-CA validity > 5 years (+7 days grace)
  DeprecatedSignatureAlgorithm  SHA-1 based signature
  DeprecatedVersion             X.509 version other than 3
  KeyTooShort                   RSA modulus <= 1024 bits
  ExpTooSmall                   RSA public exponent <= 3
  MissingCNInSan                BR 9.2.2, subject CN not repeated in the SANs
"""

from __future__ import annotations

import base64
import hashlib
import ipaddress
from collections.abc import Iterable, Sequence
from datetime import MAXYEAR, datetime, timedelta

import structlog

from br_audit.domain.models import (
    DEPRECATED_SIGNATURE_ALGORITHM,
    DEPRECATED_VERSION,
    EXP_TOO_SMALL,
    KEY_TOO_SHORT,
    MISSING_CN_IN_SAN,
    RULES,
    SHA1_SIGNATURE_ALGORITHMS,
    VALID_PERIOD_TOO_LONG,
    CertSummary,
    OpaquePublicKey,
    ParsedCertificate,
    RsaPublicKey,
)
from br_audit.domain.names import format_date, format_distinguished_name
from br_audit.domain.ports import PopularityOracle

log = structlog.get_logger()

MAX_VALIDITY_YEARS = 5
VALIDITY_GRACE = timedelta(days=7)
MIN_RSA_BITS = 1024
MIN_RSA_EXPONENT = 3

_IPV4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"


def evaluate_certificate(
    cert: ParsedCertificate,
    timestamp: int,
    oracle: PopularityOracle | None,
    chain: Sequence[ParsedCertificate],
    trusted_issuers: frozenset[str],
) -> CertSummary:
    """
    Audit one certificate and summarize the outcome.

    `chain` is only used for the trust check: the summary reports whether
    the *issuer* of any chain certificate appears in `trusted_issuers`.
    `timestamp` is carried through untouched (epoch ms of the log entry).
    """
    violations = dict.fromkeys(RULES, False)
    violations[VALID_PERIOD_TOO_LONG] = _validity_too_long(cert)
    violations[DEPRECATED_SIGNATURE_ALGORITHM] = (
        cert.signature_algorithm in SHA1_SIGNATURE_ALGORITHMS
    )
    violations[DEPRECATED_VERSION] = cert.version != 3

    key_size: int | None = None
    exponent: int | None = None
    match cert.public_key:
        case RsaPublicKey(bit_length=bits, exponent=exp):
            key_size, exponent = bits, exp
            violations[KEY_TOO_SHORT] = bits <= MIN_RSA_BITS
            violations[EXP_TOO_SMALL] = exp <= MIN_RSA_EXPONENT
        case OpaquePublicKey():
            pass

    violations[MISSING_CN_IN_SAN] = _missing_cn_in_san(cert)

    return CertSummary(
        cn=cert.subject.cn,
        issuer=format_distinguished_name(cert.issuer),
        sha256_fingerprint=fingerprint(cert.raw),
        not_before=format_date(cert.not_before),
        not_after=format_date(cert.not_after),
        key_size=key_size,
        exponent=exponent,
        signature_algorithm=int(cert.signature_algorithm),
        version=cert.version,
        is_ca=cert.is_ca,
        violations=violations,
        timestamp=timestamp,
        dns_names=cert.dns_names,
        ip_addresses=tuple(_ip_to_text(ip) for ip in cert.ip_addresses),
        max_reputation=_max_reputation(oracle, [cert.subject.cn, *cert.dns_names]),
        issuer_in_mozilla_db=issuer_in_trust_set(chain, trusted_issuers),
    )


def fingerprint(raw: bytes) -> str:
    """Base64 (standard alphabet) SHA-256 of the DER encoding."""
    return base64.b64encode(hashlib.sha256(raw).digest()).decode("ascii")


def issuer_in_trust_set(
    chain: Iterable[ParsedCertificate],
    trusted_issuers: frozenset[str],
) -> bool:
    return any(format_distinguished_name(c.issuer) in trusted_issuers for c in chain)


# ─────────────────────── Rules ───────────────────────


def _validity_too_long(cert: ParsedCertificate) -> bool:
    """CA certificates are exempt; a missing basicConstraints counts as non-CA."""
    if cert.is_ca:
        return False
    limit = _add_years(cert.not_before, MAX_VALIDITY_YEARS)
    if limit is None:
        return False
    try:
        deadline = limit + VALIDITY_GRACE
    except OverflowError:
        return False
    return cert.not_after > deadline


def _add_years(moment: datetime, years: int) -> datetime | None:
    """Calendar add; Feb 29 rolls over to Mar 1. None past datetime's range."""
    year = moment.year + years
    if year > MAXYEAR:
        return None
    try:
        return moment.replace(year=year)
    except ValueError:
        return moment.replace(year=year, month=3, day=1)


def _missing_cn_in_san(cert: ParsedCertificate) -> bool:
    """
    BR 9.2.2: the CN must also appear as a SAN (IP or DNS).

    An empty CN is never a violation. A CN that cannot be converted to
    its ASCII form stays flagged as a violation.
    """
    cn = cert.subject.cn
    if not cn:
        return False

    try:
        cn_as_ip = ipaddress.ip_address(cn)
    except ValueError:
        cn_as_ip = None

    if cn_as_ip is not None:
        wanted = _as_ip16(cn_as_ip.packed)
        return not any(_as_ip16(ip) == wanted for ip in cert.ip_addresses)

    try:
        cn_ascii = to_ascii(cn)
    except UnicodeError as e:
        log.debug("compliance.punycode_failed", cn=cn, error=str(e))
        return True

    folded = cn_ascii.casefold()
    return not any(san.casefold() == folded for san in cert.dns_names)


def to_ascii(name: str) -> str:
    """
    ASCII (Punycode) form of a host name.

    ASCII labels pass through untouched, so wildcards and underscores
    survive. Each non-ASCII label becomes "xn--" plus its Punycode, with
    no IDNA2008 codepoint, case or length checks: a CN of "☃.example"
    matches a SAN of "xn--n3h.example".
    Raises UnicodeError for labels that are not valid Unicode text.
    """
    if name.isascii():
        return name
    return ".".join(
        label if label.isascii() else "xn--" + _punycode(label)
        for label in name.split(".")
    )


def _punycode(label: str) -> str:
    label.encode("utf-8")  # lone surrogates raise UnicodeEncodeError
    return label.encode("punycode").decode("ascii")


def _as_ip16(packed: bytes) -> bytes:
    if len(packed) == 4:
        return _IPV4_MAPPED_PREFIX + packed
    return packed


def _ip_to_text(packed: bytes) -> str:
    """Dotted or colon form; an iPAddress of any other length is "?" plus hex."""
    if len(packed) not in (4, 16):
        return "?" + packed.hex()
    address = ipaddress.ip_address(packed)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


# ─────────────────────── Popularity ───────────────────────


def _max_reputation(oracle: PopularityOracle | None, names: Iterable[str]) -> float | None:
    """Highest score among the names the oracle knows; None if it knows none."""
    if oracle is None:
        return None
    scores = [score for name in names if name and (score := _lookup(oracle, name)) is not None]
    return max(scores, default=None)


def _lookup(oracle: PopularityOracle, name: str) -> float | None:
    try:
        return oracle.lookup(name)
    except Exception as e:
        # A single broken lookup must not abort the audit of a whole log.
        log.debug("compliance.lookup_failed", name=name, error=str(e))
        return None
