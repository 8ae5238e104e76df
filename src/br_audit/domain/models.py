"""
Domain models — immutable values flowing through an audit run.

Input side: ParsedCertificate (what the decoder extracts from DER) and
LogEntry (one CT log entry: leaf, chain, timestamp).
Output side: CertSummary (one per observed certificate), ViolationExample
and the AuditReport aggregate handed to the sinks.

The mutable per-issuer reputation accumulators live in
br_audit.domain.reputation, next to the aggregator that owns them.
"""

from __future__ import annotations

import base64
import textwrap
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from br_audit.domain.reputation import IssuerReputation

# ─────────────────────── Rule names (wire identifiers) ───────────────────────

VALID_PERIOD_TOO_LONG = "ValidPeriodTooLong"
DEPRECATED_SIGNATURE_ALGORITHM = "DeprecatedSignatureAlgorithm"
DEPRECATED_VERSION = "DeprecatedVersion"
MISSING_CN_IN_SAN = "MissingCNInSan"
KEY_TOO_SHORT = "KeyTooShort"
EXP_TOO_SMALL = "ExpTooSmall"

RULES: tuple[str, ...] = (
    VALID_PERIOD_TOO_LONG,
    DEPRECATED_SIGNATURE_ALGORITHM,
    DEPRECATED_VERSION,
    MISSING_CN_IN_SAN,
    KEY_TOO_SHORT,
    EXP_TOO_SMALL,
)

# Wire value for "not applicable" / "not found".
ABSENT = -1


class SignatureAlgorithm(IntEnum):
    """Signature algorithm codes as stored in the audit output."""

    UNKNOWN = 0
    MD2_WITH_RSA = 1
    MD5_WITH_RSA = 2
    SHA1_WITH_RSA = 3
    SHA256_WITH_RSA = 4
    SHA384_WITH_RSA = 5
    SHA512_WITH_RSA = 6
    DSA_WITH_SHA1 = 7
    DSA_WITH_SHA256 = 8
    ECDSA_WITH_SHA1 = 9
    ECDSA_WITH_SHA256 = 10
    ECDSA_WITH_SHA384 = 11
    ECDSA_WITH_SHA512 = 12
    SHA256_WITH_RSA_PSS = 13
    SHA384_WITH_RSA_PSS = 14
    SHA512_WITH_RSA_PSS = 15
    PURE_ED25519 = 16


SHA1_SIGNATURE_ALGORITHMS = frozenset(
    {
        SignatureAlgorithm.SHA1_WITH_RSA,
        SignatureAlgorithm.DSA_WITH_SHA1,
        SignatureAlgorithm.ECDSA_WITH_SHA1,
    }
)


# ─────────────────────── Parsed certificate ───────────────────────


@dataclass(frozen=True, slots=True)
class DistinguishedName:
    """The DN attributes the audit cares about; each may be multi-valued."""

    organization: tuple[str, ...] = ()
    organizational_unit: tuple[str, ...] = ()
    common_name: tuple[str, ...] = ()

    @property
    def cn(self) -> str:
        return self.common_name[0] if self.common_name else ""


@dataclass(frozen=True, slots=True)
class RsaPublicKey:
    bit_length: int
    exponent: int


@dataclass(frozen=True, slots=True)
class OpaquePublicKey:
    """Any non-RSA key. Only the algorithm name is kept, for logs."""

    algorithm: str


type PublicKey = RsaPublicKey | OpaquePublicKey


@dataclass(frozen=True, slots=True)
class BasicConstraints:
    ca: bool


@dataclass(frozen=True, slots=True)
class ParsedCertificate:
    """
    Decoded view of one X.509 certificate.

    `basic_constraints` is None when the extension is absent, which the
    validity-period rule treats the same as CA:FALSE.
    `ip_addresses` holds raw 4- or 16-byte addresses.
    """

    raw: bytes = field(repr=False)
    subject: DistinguishedName
    issuer: DistinguishedName
    not_before: datetime
    not_after: datetime
    public_key: PublicKey
    signature_algorithm: SignatureAlgorithm
    version: int
    basic_constraints: BasicConstraints | None = None
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[bytes, ...] = ()

    @property
    def is_ca(self) -> bool:
        return self.basic_constraints is not None and self.basic_constraints.ca


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One CT log entry: leaf certificate DER, chain DERs, timestamp in epoch ms."""

    index: int
    timestamp: int
    certificate: bytes = field(repr=False)
    chain: tuple[bytes, ...] = field(default=(), repr=False)


# ─────────────────────── Audit output ───────────────────────


@dataclass(frozen=True, slots=True)
class CertSummary:
    """
    Per-certificate audit result.

    `violations` always holds exactly the six rules of RULES.
    `key_size`/`exponent` are None for non-RSA keys and `max_reputation`
    is None when no name was found by the popularity oracle; the JSON
    form writes -1 for all three.
    """

    cn: str
    issuer: str
    sha256_fingerprint: str
    not_before: str
    not_after: str
    key_size: int | None
    exponent: int | None
    signature_algorithm: int
    version: int
    is_ca: bool
    violations: Mapping[str, bool]
    timestamp: int
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[str, ...] = ()
    max_reputation: float | None = None
    issuer_in_mozilla_db: bool = False

    def __post_init__(self) -> None:
        if sorted(self.violations) != sorted(RULES):
            raise ValueError(
                f"violations must name exactly {sorted(RULES)}, got {sorted(self.violations)}"
            )
        if not isinstance(self.violations, MappingProxyType):
            object.__setattr__(self, "violations", MappingProxyType(dict(self.violations)))

    @property
    def violates_br(self) -> bool:
        return any(self.violations.values())

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "CN": self.cn,
            "Issuer": self.issuer,
            "Sha256Fingerprint": self.sha256_fingerprint,
            "NotBefore": self.not_before,
            "NotAfter": self.not_after,
            "KeySize": ABSENT if self.key_size is None else self.key_size,
            "Exp": ABSENT if self.exponent is None else self.exponent,
            "SignatureAlgorithm": self.signature_algorithm,
            "Version": self.version,
            "IsCA": self.is_ca,
            "DnsNames": list(self.dns_names),
            "IpAddresses": list(self.ip_addresses),
            "Violations": dict(self.violations),
            "MaxReputation": ABSENT if self.max_reputation is None else self.max_reputation,
            "IssuerInMozillaDB": self.issuer_in_mozilla_db,
            "Timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class ViolationExample:
    """Most recent certificate seen violating `rule` for `issuer`."""

    issuer: str
    rule: str
    certificate: bytes = field(repr=False)
    last_seen: int = 0

    @property
    def certificate_pem(self) -> str:
        body = base64.b64encode(self.certificate).decode("ascii")
        lines = "\n".join(textwrap.wrap(body, 64))
        return f"-----BEGIN CERTIFICATE-----\n{lines}\n-----END CERTIFICATE-----\n"


@dataclass(frozen=True, slots=True)
class AuditReport:
    """Everything one audit run produces, handed as a unit to each sink."""

    violating_summaries: list[CertSummary] = field(default_factory=list)
    reputations: list[IssuerReputation] = field(default_factory=list)
    examples: list[ViolationExample] = field(default_factory=list)
    entries_read: int = 0
    entries_skipped: int = 0

    @property
    def certificates_audited(self) -> int:
        return sum(r.raw_count for r in self.reputations)
