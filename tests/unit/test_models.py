"""
Unit tests for domain models — value objects.

Verifies frozen dataclass behavior, the six-rule invariant of
CertSummary, wire serialization and computed properties.
"""

from __future__ import annotations

import json

import pytest

from br_audit.domain.models import (
    KEY_TOO_SHORT,
    RULES,
    AuditReport,
    BasicConstraints,
    CertSummary,
    DistinguishedName,
)
from br_audit.domain.reputation import IssuerReputation
from tests.factories import make_parsed, make_summary


class TestDistinguishedName:
    def test_cn_is_first_common_name(self) -> None:
        assert DistinguishedName(common_name=("a", "b")).cn == "a"

    def test_cn_empty_when_absent(self) -> None:
        assert DistinguishedName().cn == ""


class TestParsedCertificate:
    def test_is_ca_requires_extension(self) -> None:
        """
        GIVEN certificates without basicConstraints, with CA:FALSE and with CA:TRUE
        WHEN is_ca is read
        THEN only the CA:TRUE one reports True.
        """
        assert make_parsed(basic_constraints=None).is_ca is False
        assert make_parsed(basic_constraints=BasicConstraints(ca=False)).is_ca is False
        assert make_parsed(basic_constraints=BasicConstraints(ca=True)).is_ca is True

    def test_frozen_prevents_mutation(self) -> None:
        cert = make_parsed()
        with pytest.raises(AttributeError):
            cert.version = 1  # type: ignore[misc]


class TestCertSummary:
    def test_rejects_missing_rules(self) -> None:
        """
        GIVEN a violations map naming only five rules
        WHEN a CertSummary is constructed
        THEN ValueError is raised.
        """
        violations = dict.fromkeys(RULES[:-1], False)
        with pytest.raises(ValueError, match="violations"):
            CertSummary(
                cn="x",
                issuer="CN=x",
                sha256_fingerprint="f",
                not_before="Jan 1 2020",
                not_after="Jan 1 2021",
                key_size=2048,
                exponent=65537,
                signature_algorithm=4,
                version=3,
                is_ca=False,
                violations=violations,
                timestamp=0,
            )

    def test_violations_are_read_only(self) -> None:
        summary = make_summary()
        with pytest.raises(TypeError):
            summary.violations[KEY_TOO_SHORT] = True  # type: ignore[index]

    def test_violates_br(self) -> None:
        assert make_summary().violates_br is False
        assert make_summary(violated=(KEY_TOO_SHORT,)).violates_br is True

    def test_json_uses_wire_names_and_sentinels(self) -> None:
        """
        GIVEN a summary without reputation
        WHEN serialized
        THEN wire names are used, MaxReputation is -1 and the dict is JSON-encodable.
        """
        data = make_summary(violated=(KEY_TOO_SHORT,)).to_json_dict()

        assert set(data) == {
            "CN",
            "Issuer",
            "Sha256Fingerprint",
            "NotBefore",
            "NotAfter",
            "KeySize",
            "Exp",
            "SignatureAlgorithm",
            "Version",
            "IsCA",
            "DnsNames",
            "IpAddresses",
            "Violations",
            "MaxReputation",
            "IssuerInMozillaDB",
            "Timestamp",
        }
        assert data["MaxReputation"] == -1
        assert data["Violations"][KEY_TOO_SHORT] is True
        json.dumps(data)

    def test_json_keeps_known_reputation(self) -> None:
        assert make_summary(max_reputation=0.25).to_json_dict()["MaxReputation"] == 0.25


class TestAuditReport:
    def test_certificates_audited_sums_bucket_counts(self) -> None:
        first = IssuerReputation.for_observation("CN=A", 0)
        first.update(make_summary(issuer="CN=A", timestamp=0))
        second = IssuerReputation.for_observation("CN=B", 0)
        second.update(make_summary(issuer="CN=B", timestamp=0))
        second.update(make_summary(issuer="CN=B", timestamp=0))

        report = AuditReport(reputations=[first, second])

        assert report.certificates_audited == 3

    def test_defaults_are_empty(self) -> None:
        report = AuditReport()
        assert report.violating_summaries == []
        assert report.certificates_audited == 0
