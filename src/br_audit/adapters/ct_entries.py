"""
CT log entries adapter — RFC 6962 get-entries snapshot → LogEntry stream.

Adapter layer — implements the LogEntrySource port over a JSON-lines
file in which every line is one object of a get-entries response:

  {"leaf_input": "<base64 MerkleTreeLeaf>", "extra_data": "<base64>"}

An optional integer "index" field is used as the entry index; otherwise
the position in the file is.

MerkleTreeLeaf layout (all integers big-endian):
  [0]      version (v1 = 0)
  [1]      leaf type (timestamped_entry = 0)
  [2:10]   timestamp, epoch milliseconds
  [10:12]  entry type (0 = x509_entry, 1 = precert_entry)
  [12:15]  x509_entry: certificate length, then the DER certificate

extra_data carries the chain as a 24-bit-length-prefixed list of
24-bit-length-prefixed certificates. For precert entries it first holds
the full pre-certificate, which is what gets audited.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Any

import structlog

from br_audit.domain.models import LogEntry
from br_audit.railway import ErrorCode, Result

log = structlog.get_logger()

X509_ENTRY = 0
PRECERT_ENTRY = 1

_TIMESTAMPED_ENTRY = 0
_LENGTH_BYTES = 3


class MalformedEntryError(ValueError):
    """A get-entries record whose binary structures cannot be decoded."""


def _read_uint(data: bytes, offset: int, size: int) -> int:
    if offset + size > len(data):
        raise MalformedEntryError(f"truncated at offset {offset}, need {size} bytes")
    return int.from_bytes(data[offset : offset + size], "big")


def _read_opaque(data: bytes, offset: int) -> tuple[bytes, int]:
    """Read one 24-bit-length-prefixed blob; returns it and the next offset."""
    length = _read_uint(data, offset, _LENGTH_BYTES)
    start = offset + _LENGTH_BYTES
    end = start + length
    if end > len(data):
        raise MalformedEntryError(f"blob of {length} bytes overruns record at offset {start}")
    return data[start:end], end


def _read_chain(data: bytes, offset: int) -> tuple[bytes, ...]:
    chain_bytes, _ = _read_opaque(data, offset)
    chain: list[bytes] = []
    position = 0
    while position < len(chain_bytes):
        cert, position = _read_opaque(chain_bytes, position)
        chain.append(cert)
    return tuple(chain)


def decode_entry(index: int, leaf_input: bytes, extra_data: bytes) -> LogEntry:
    """
    Decode one get-entries record into a LogEntry.

    Raises MalformedEntryError for unsupported leaf/entry types and for
    truncated structures.
    """
    if len(leaf_input) < 12:
        raise MalformedEntryError(f"leaf_input too short ({len(leaf_input)} bytes)")
    if leaf_input[1] != _TIMESTAMPED_ENTRY:
        raise MalformedEntryError(f"unsupported leaf type {leaf_input[1]}")

    timestamp = _read_uint(leaf_input, 2, 8)
    entry_type = _read_uint(leaf_input, 10, 2)

    if entry_type == X509_ENTRY:
        certificate, _ = _read_opaque(leaf_input, 12)
        chain = _read_chain(extra_data, 0) if extra_data else ()
    elif entry_type == PRECERT_ENTRY:
        certificate, offset = _read_opaque(extra_data, 0)
        chain = _read_chain(extra_data, offset) if offset < len(extra_data) else ()
    else:
        raise MalformedEntryError(f"unsupported entry type {entry_type}")

    return LogEntry(index=index, timestamp=timestamp, certificate=certificate, chain=chain)


def _parse_line(position: int, line: str) -> LogEntry:
    record: dict[str, Any] = json.loads(line)
    try:
        leaf_input = base64.b64decode(record["leaf_input"], validate=True)
        extra_data = base64.b64decode(record.get("extra_data", ""), validate=True)
    except KeyError as e:
        raise MalformedEntryError(f"missing field {e}") from e
    except binascii.Error as e:
        raise MalformedEntryError(f"invalid base64: {e}") from e
    index = record.get("index", position)
    return decode_entry(int(index), leaf_input, extra_data)


class CtEntriesFile:
    """
    Stream LogEntry values from a JSON-lines get-entries snapshot.

    Implements the LogEntrySource port. Opening the file is the only
    step that can fail the Result; a malformed line is logged and skipped
    so one bad record never aborts a whole log.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def entries(self, max_entries: int = 0) -> Result[Iterator[LogEntry]]:
        return Result.from_computation(
            lambda: self._path.open(encoding="utf-8"),
            ErrorCode.IO_ERROR,
            f"Cannot open CT entries file {self._path}",
        ).map(lambda handle: self._iter_entries(handle, max_entries))

    def _iter_entries(self, handle: IO[str], max_entries: int) -> Iterator[LogEntry]:
        consumed = 0
        malformed = 0
        with handle:
            for line in handle:
                if not line.strip():
                    continue
                if max_entries and consumed >= max_entries:
                    break
                position = consumed
                consumed += 1
                try:
                    entry = _parse_line(position, line)
                except (ValueError, TypeError) as e:
                    # json.JSONDecodeError and MalformedEntryError are ValueErrors
                    malformed += 1
                    log.warning("ct_entries.malformed", position=position, error=str(e))
                    continue
                yield entry
        log.info(
            "ct_entries.exhausted",
            path=str(self._path),
            entries=consumed,
            malformed=malformed,
        )
