"""
Shared test fixtures and helpers for the br-audit test suite.

Provides path resolution for fixture files and the reference certificate
(a 512-bit, SHA1-signed, self-issued CA certificate for test.example.com).
"""

from __future__ import annotations

import base64
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

REFERENCE_FINGERPRINT = "Gvp+Qw6i96YPjUZoO2zqLWdusngA8xpAtvMBouj+MZ8="
REFERENCE_ISSUER = "O=Acme Co, CN=test.example.com"


def fixture_path(filename: str) -> Path:
    """
    Resolve the absolute path to a test fixture file.

    Raises FileNotFoundError if the fixture does not exist.
    """
    path = FIXTURES_DIR / filename
    if not path.exists():
        raise FileNotFoundError(f"Test fixture not found: {path}")
    return path


def pem_to_der(pem: str) -> bytes:
    body = "".join(line for line in pem.strip().splitlines() if not line.startswith("-----"))
    return base64.b64decode(body)


@pytest.fixture()
def fixtures_dir() -> Path:
    """Return the absolute path to the test fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture()
def reference_der() -> bytes:
    """DER bytes of tests/fixtures/reference_cert.pem."""
    return pem_to_der(fixture_path("reference_cert.pem").read_text())
