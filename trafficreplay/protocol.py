"""Payload framing shared by inputs and outputs.

Every payload travels as a one-line meta header followed by the raw data::

    <type> <id> <timing> <latency>\\n<data>

and payloads in a stream are delimited by :data:`PAYLOAD_SEPARATOR`.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

PAYLOAD_SEPARATOR = "\n🐵🙈🙉\n".encode()

_READ_CHUNK = 64 * 1024


class PayloadType(bytes, Enum):
    """First byte of a payload's meta header."""

    REQUEST = b"1"
    RESPONSE = b"2"
    REPLAYED_RESPONSE = b"3"


class StoppedError(Exception):
    """Raised when a plugin has been stopped and can no longer be used."""


@dataclass
class Message:
    """Data passed between plugins: the meta header and the payload itself."""

    meta: bytes = b""
    data: bytes = b""


def rand_hex(length: int) -> bytes:
    """Return ``length`` random hex digits as bytes."""
    return secrets.token_hex(length // 2).encode().ljust(length, b"\0")


def new_uuid() -> bytes:
    """Return a fresh 24-digit payload id."""
    return rand_hex(24)


def iter_payloads(stream: BinaryIO) -> Iterator[bytes]:
    """Yield payloads from a binary stream, split on :data:`PAYLOAD_SEPARATOR`.

    Whatever remains at end of stream is yielded as a last payload.
    """
    read = getattr(stream, "read1", stream.read)
    buffer = b""
    while True:
        chunk = read(_READ_CHUNK)
        if not chunk:
            break
        buffer += chunk
        while (index := buffer.find(PAYLOAD_SEPARATOR)) >= 0:
            yield buffer[:index]
            buffer = buffer[index + len(PAYLOAD_SEPARATOR) :]
    if buffer:
        yield buffer


def payload_header(payload_type: PayloadType | bytes, uuid: bytes, timing: int, latency: int) -> bytes:
    """Build a meta header line.

    ``timing`` is the request start or the round-trip time, depending on the type.
    """
    kind = PayloadType(payload_type).value
    return b"%s %s %d %d\n" % (kind, uuid, timing, latency)


def payload_body(payload: bytes) -> bytes:
    """Return everything after the first line."""
    return payload[payload.find(b"\n") + 1 :]


def payload_meta(payload: bytes) -> list[bytes]:
    """Split the first line into its space-separated fields; empty if there is no line end."""
    end = payload.find(b"\n")
    if end < 0:
        return []
    return payload[:end].split(b" ")


def payload_meta_with_body(payload: bytes) -> tuple[bytes | None, bytes]:
    """Split a payload into (meta line including ``\\n``, body).

    A payload without a usable meta line is returned whole as the body.
    """
    end = payload.find(b"\n")
    if end > 0 and len(payload) > end + 1:
        return payload[: end + 1], payload[end + 1 :]
    return None, payload


def payload_id(payload: bytes) -> bytes:
    """Return the id field of the meta header, or empty bytes."""
    meta = payload_meta(payload)
    return meta[1] if len(meta) >= 2 else b""


def is_origin_payload(payload: bytes) -> bool:
    """Report whether the payload is an original request or response."""
    return payload[:1] in (PayloadType.REQUEST.value, PayloadType.RESPONSE.value)


def is_request_payload(payload: bytes) -> bool:
    """Report whether the payload is a request."""
    return payload[:1] == PayloadType.REQUEST.value


def extract_limit_options(options: str) -> tuple[str, str]:
    """Split ``"address|limit"`` into its address and limit parts."""
    parts = options.split("|")
    if len(parts) > 1:
        return parts[0], parts[1]
    return parts[0], ""