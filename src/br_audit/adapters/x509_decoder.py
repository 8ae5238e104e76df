"""
X.509 decoder adapter — DER bytes → ParsedCertificate.

Adapter layer — implements the CertificateDecoder port using:
  - asn1crypto: raw TBS fields cryptography refuses or normalizes away
    (v2 version numbers, RSA moduli/exponents of any size, the outer
    signature algorithm OID and RSASSA-PSS hash parameters)
  - cryptography (PyCA): names, validity window, subjectAltName and
    basicConstraints extensions

cryptography refuses X.509 v2 certificates outright; those are decoded
end to end with asn1crypto instead.

Neither library verifies signatures; nothing here does either.
"""

from __future__ import annotations

import structlog
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.x509.extensions import ExtensionNotFound
from cryptography.x509.oid import NameOID

from br_audit.domain.models import (
    BasicConstraints,
    DistinguishedName,
    OpaquePublicKey,
    ParsedCertificate,
    PublicKey,
    RsaPublicKey,
    SignatureAlgorithm,
)
from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()

# Outer signatureAlgorithm OID → stored code.
_SIGNATURE_OIDS: dict[str, SignatureAlgorithm] = {
    "1.2.840.113549.1.1.2": SignatureAlgorithm.MD2_WITH_RSA,
    "1.2.840.113549.1.1.4": SignatureAlgorithm.MD5_WITH_RSA,
    "1.2.840.113549.1.1.5": SignatureAlgorithm.SHA1_WITH_RSA,
    "1.3.14.3.2.29": SignatureAlgorithm.SHA1_WITH_RSA,
    "1.2.840.113549.1.1.11": SignatureAlgorithm.SHA256_WITH_RSA,
    "1.2.840.113549.1.1.12": SignatureAlgorithm.SHA384_WITH_RSA,
    "1.2.840.113549.1.1.13": SignatureAlgorithm.SHA512_WITH_RSA,
    "1.2.840.10040.4.3": SignatureAlgorithm.DSA_WITH_SHA1,
    "2.16.840.1.101.3.4.3.2": SignatureAlgorithm.DSA_WITH_SHA256,
    "1.2.840.10045.4.1": SignatureAlgorithm.ECDSA_WITH_SHA1,
    "1.2.840.10045.4.3.2": SignatureAlgorithm.ECDSA_WITH_SHA256,
    "1.2.840.10045.4.3.3": SignatureAlgorithm.ECDSA_WITH_SHA384,
    "1.2.840.10045.4.3.4": SignatureAlgorithm.ECDSA_WITH_SHA512,
    "1.3.101.112": SignatureAlgorithm.PURE_ED25519,
}

_RSASSA_PSS_OID = "1.2.840.113549.1.1.10"
_PSS_BY_HASH: dict[str, SignatureAlgorithm] = {
    "sha256": SignatureAlgorithm.SHA256_WITH_RSA_PSS,
    "sha384": SignatureAlgorithm.SHA384_WITH_RSA_PSS,
    "sha512": SignatureAlgorithm.SHA512_WITH_RSA_PSS,
}

_VERSIONS = {"v1": 1, "v2": 2, "v3": 3}


# ─────────────────────── Field extraction ───────────────────────


def _name_values(name: x509.Name, oid: x509.ObjectIdentifier) -> tuple[str, ...]:
    return tuple(str(attr.value) for attr in name.get_attributes_for_oid(oid))


def _distinguished_name(name: x509.Name) -> DistinguishedName:
    return DistinguishedName(
        organization=_name_values(name, NameOID.ORGANIZATION_NAME),
        organizational_unit=_name_values(name, NameOID.ORGANIZATIONAL_UNIT_NAME),
        common_name=_name_values(name, NameOID.COMMON_NAME),
    )


def _subject_alt_names(cert: x509.Certificate) -> tuple[tuple[str, ...], tuple[bytes, ...]]:
    """DNS names and packed IP addresses from subjectAltName, in certificate order."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except ExtensionNotFound:
        return (), ()
    dns_names = tuple(san.get_values_for_type(x509.DNSName))
    ip_addresses = tuple(ip.packed for ip in san.get_values_for_type(x509.IPAddress))
    return dns_names, ip_addresses


def _basic_constraints(cert: x509.Certificate) -> BasicConstraints | None:
    try:
        ext = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except ExtensionNotFound:
        return None
    return BasicConstraints(ca=ext.value.ca)


def _public_key(asn1_cert: asn1_x509.Certificate) -> PublicKey:
    key_info = asn1_cert.public_key
    algorithm = key_info.algorithm
    if algorithm != "rsa":
        return OpaquePublicKey(algorithm=algorithm)
    rsa_key = key_info["public_key"].parsed
    modulus = rsa_key["modulus"].native
    return RsaPublicKey(
        bit_length=modulus.bit_length(),
        exponent=rsa_key["public_exponent"].native,
    )


def _signature_algorithm(asn1_cert: asn1_x509.Certificate) -> SignatureAlgorithm:
    algorithm = asn1_cert["signature_algorithm"]
    oid = algorithm["algorithm"].dotted
    if oid == _RSASSA_PSS_OID:
        return _PSS_BY_HASH.get(algorithm.hash_algo, SignatureAlgorithm.UNKNOWN)
    return _SIGNATURE_OIDS.get(oid, SignatureAlgorithm.UNKNOWN)


def _version(asn1_cert: asn1_x509.Certificate) -> int:
    raw = asn1_cert["tbs_certificate"]["version"].native
    return _VERSIONS.get(raw, 0)


def decode_certificate(der: bytes) -> ParsedCertificate:
    """
    Decode DER into a ParsedCertificate. Raises on malformed input.

    cryptography rejects X.509 v2 certificates outright; those are read
    with asn1crypto alone so the version rule still sees them.
    """
    asn1_cert = asn1_x509.Certificate.load(der)
    try:
        cert = x509.load_der_x509_certificate(der)
    except x509.InvalidVersion:
        log.debug("decoder.asn1_fallback", reason="unsupported version")
        return _decode_with_asn1crypto(der, asn1_cert)
    dns_names, ip_addresses = _subject_alt_names(cert)

    return ParsedCertificate(
        raw=der,
        subject=_distinguished_name(cert.subject),
        issuer=_distinguished_name(cert.issuer),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        public_key=_public_key(asn1_cert),
        signature_algorithm=_signature_algorithm(asn1_cert),
        version=_version(asn1_cert),
        basic_constraints=_basic_constraints(cert),
        dns_names=dns_names,
        ip_addresses=ip_addresses,
    )


# ─────────────────────── asn1crypto-only path ───────────────────────

_ASN1_NAME_FIELDS = {
    "organization_name": "organization",
    "organizational_unit_name": "organizational_unit",
    "common_name": "common_name",
}


def _asn1_distinguished_name(name: asn1_x509.Name) -> DistinguishedName:
    values: dict[str, list[str]] = {f: [] for f in _ASN1_NAME_FIELDS.values()}
    for rdn in name.chosen:
        for type_and_value in rdn:
            target = _ASN1_NAME_FIELDS.get(type_and_value["type"].native)
            if target is not None:
                values[target].append(str(type_and_value["value"].native))
    return DistinguishedName(**{f: tuple(v) for f, v in values.items()})


def _decode_with_asn1crypto(der: bytes, asn1_cert: asn1_x509.Certificate) -> ParsedCertificate:
    validity = asn1_cert["tbs_certificate"]["validity"]
    dns_names: list[str] = []
    ip_addresses: list[bytes] = []
    for general_name in asn1_cert.subject_alt_name_value or []:
        if general_name.name == "dns_name":
            dns_names.append(general_name.native)
        elif general_name.name == "ip_address":
            ip_addresses.append(general_name.chosen.contents)

    constraints = asn1_cert.basic_constraints_value
    return ParsedCertificate(
        raw=der,
        subject=_asn1_distinguished_name(asn1_cert.subject),
        issuer=_asn1_distinguished_name(asn1_cert.issuer),
        not_before=validity["not_before"].native,
        not_after=validity["not_after"].native,
        public_key=_public_key(asn1_cert),
        signature_algorithm=_signature_algorithm(asn1_cert),
        version=_version(asn1_cert),
        basic_constraints=(
            None if constraints is None else BasicConstraints(ca=bool(constraints["ca"].native))
        ),
        dns_names=tuple(dns_names),
        ip_addresses=tuple(ip_addresses),
    )


# ─────────────────────── Public decoder class ───────────────────────


class CryptographyCertificateDecoder:
    """
    Decode DER certificates for the compliance evaluator.

    Implements the CertificateDecoder port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def decode(self, der: bytes) -> Result[ParsedCertificate]:
        return Result.from_computation(
            lambda: decode_certificate(der),
            ErrorCode.PARSE_ERROR,
            "Failed to decode X.509 certificate",
        )
