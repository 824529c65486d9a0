"""Byte-level helpers for inspecting and editing raw HTTP/1.x payloads.

Example of a request payload, with new lines escaped::

    POST /upload HTTP/1.1\\r\\n
    User-Agent: Gor\\r\\n
    Content-Length: 11\\r\\n
    \\r\\n
    Hello world
"""

from __future__ import annotations

from dataclasses import dataclass

CRLF = b"\r\n"
EMPTY_LINE = b"\r\n\r\n"
HEADER_DELIM = b": "

METHODS = (
    b"CONNECT",
    b"DELETE",
    b"GET",
    b"HEAD",
    b"OPTIONS",
    b"PATCH",
    b"POST",
    b"PUT",
    b"TRACE",
)

MIN_REQUEST_COUNT = 16  # "GET / HTTP/1.1\r\n"
MIN_RESPONSE_COUNT = 14  # "HTTP/1.1 200\r\n"
VERSION_LEN = 8  # "HTTP/1.1"

_HTTP1_VERSIONS = frozenset({b"HTTP/1.0", b"HTTP/1.1"})

# Status codes that have a registered reason phrase.
_KNOWN_STATUSES = frozenset(
    {
        100, 101, 102, 103,
        200, 201, 202, 203, 204, 205, 206, 207, 208, 226,
        300, 301, 302, 303, 304, 305, 307, 308,
        400, 401, 402, 403, 404, 405, 406, 407, 408, 409, 410, 411, 412,
        413, 414, 415, 416, 417, 418, 421, 422, 423, 424, 425, 426, 428,
        429, 431, 451,
        500, 501, 502, 503, 504, 505, 506, 507, 508, 510, 511,
    }
)

_DIGITS = {ord(c): int(c, 16) for c in "0123456789abcdefABCDEF"}

_TOKEN_BYTES = frozenset(
    b"!#$%&'*+-.^_`|~0123456789"
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
)


@dataclass(frozen=True)
class HeaderMatch:
    """Location of a header inside a payload.

    ``header_end`` is the index of the line's terminating ``\\n``;
    ``value_end`` is the index of the last byte of the value (inclusive).
    """

    value: bytes
    header_start: int
    header_end: int
    value_start: int
    value_end: int


@dataclass
class HTTPState:
    """Parsing state kept between calls of :func:`has_full_payload`."""

    body: int = 0
    header_start: int = 0
    header_end: int = 0
    header_parsed: bool = False
    has_full_payload: bool = False
    is_chunked: bool = False
    body_len: int = 0
    has_trailer: bool = False
    continue100: bool = False


def _atoi(digits: bytes, base: int) -> tuple[int, bool]:
    """Parse a positive integer; on a bad digit return what was parsed so far."""
    num = 0
    for c in digits:
        value = _DIGITS.get(c)
        if value is None or value >= base:
            return num, False
        num = num * base + value
    return num, True


def mime_headers_end_pos(payload: bytes) -> int:
    """Return the position just after the blank line ending the headers, or -1."""
    pos = payload.find(EMPTY_LINE)
    return -1 if pos < 0 else pos + 4


def mime_headers_start_pos(payload: bytes) -> int:
    """Return the position of the second line (first header), or -1."""
    pos = payload.find(CRLF)
    return -1 if pos < 0 else pos + 2


def find_header(payload: bytes, name: bytes) -> HeaderMatch | None:
    """Locate header ``name`` (case-insensitive); multi-line headers are not supported."""
    if has_title(payload):
        start = mime_headers_start_pos(payload)
        if start < 0:
            return None
    else:
        start = 0

    wanted = name.lower()
    while start < len(payload):
        end = payload.find(b"\n", start)
        if end == -1:
            return None
        colon = payload.find(b":", start, end)
        if colon == -1:
            # Malformed header, most likely a packet with partial headers.
            start = end + 1
            continue
        if payload[start:colon].lower() == wanted:
            value_start = colon + 1
            value_end = end - 2
            while value_start < value_end and payload[value_start] < 0x21:
                value_start += 1
            while value_end > value_start and payload[value_end] < 0x21:
                value_end -= 1
            return HeaderMatch(
                value=payload[value_start : value_end + 1] if value_end >= value_start else b"",
                header_start=start,
                header_end=end,
                value_start=value_start,
                value_end=value_end,
            )
        start = end + 1
    return None


def _canonical_key(key: bytes) -> str:
    if any(c not in _TOKEN_BYTES for c in key):
        return key.decode("latin-1")
    out = bytearray()
    upper = True
    for c in key:
        if upper and 0x61 <= c <= 0x7A:
            c -= 0x20
        elif not upper and 0x41 <= c <= 0x5A:
            c += 0x20
        out.append(c)
        upper = c == 0x2D
    return out.decode("latin-1")


def get_headers(payload: bytes) -> dict[str, list[str]] | None:
    """Read a MIME header block; return None unless it is well formed and ends with a blank line."""
    if payload[:1] in (b" ", b"\t"):
        return None

    raw_lines = payload.split(b"\n")[:-1]  # only lines terminated by "\n"
    lines = [line[:-1] if line.endswith(b"\r") else line for line in raw_lines]

    headers: dict[str, list[str]] = {}
    index = 0
    while index < len(lines):
        line = lines[index]
        index += 1
        if not line:
            return headers
        parts = [line.strip(b" \t\r\n")]
        while index < len(lines) and lines[index][:1] in (b" ", b"\t"):
            parts.append(lines[index].strip(b" \t\r\n"))
            index += 1
        kv = b" ".join(parts)
        if not kv:
            return headers

        colon = kv.find(b":")
        if colon < 0:
            return None
        key = _canonical_key(kv[:colon].rstrip(b" "))
        if not key:
            continue
        value = kv[colon + 1 :].lstrip(b" \t").decode("latin-1")
        headers.setdefault(key, []).append(value)
    return None


def parse_headers(payload: bytes) -> dict[str, list[str]] | None:
    """Parse the headers of a payload, skipping its title line if present."""
    if has_title(payload):
        start = mime_headers_start_pos(payload)
        if start > len(payload) - 1:
            return None
        payload = payload[start:]
    end = mime_headers_end_pos(payload)
    if end > 1:
        payload = payload[:end]
    return get_headers(payload)


def header(payload: bytes, name: bytes) -> bytes:
    """Return the value of header ``name``, or empty bytes if it is absent."""
    match = find_header(payload, name)
    return match.value if match else b""


def set_header(payload: bytes, name: bytes, value: bytes) -> bytes:
    """Replace the value of a header, adding the header if it is absent."""
    match = find_header(payload, name)
    if match:
        return payload[: match.value_start] + value + payload[match.value_end + 1 :]
    return add_header(payload, name, value)


def add_header(payload: bytes, name: bytes, value: bytes) -> bytes:
    """Insert a header at the start of the headers section."""
    start = mime_headers_start_pos(payload)
    if start < 1:
        return payload
    return payload[:start] + name + HEADER_DELIM + value + CRLF + payload[start:]


def delete_header(payload: bytes, name: bytes) -> bytes:
    """Remove the header line for ``name`` if present."""
    match = find_header(payload, name)
    if match:
        return payload[: match.header_start] + payload[match.header_end + 1 :]
    return payload


def body(payload: bytes) -> bytes:
    """Return the body after the headers, or empty bytes if there is none."""
    pos = mime_headers_end_pos(payload)
    if pos == -1 or len(payload) <= pos:
        return b""
    return payload[pos:]


def path(payload: bytes) -> bytes:
    """Return the request path, or empty bytes if this is not a request."""
    if not has_request_title(payload):
        return b""
    start = payload.find(b" ") + 1
    end = payload.find(b" ", start)
    return payload[start:end]


def set_path(payload: bytes, new_path: bytes) -> bytes:
    """Return the payload with the second field of its title replaced."""
    if not has_title(payload):
        raise ValueError("payload has no HTTP title")
    start = payload.find(b" ") + 1
    end = payload.find(b" ", start)
    if end == -1:
        raise ValueError("payload title has no path field")
    return payload[:start] + new_path + payload[end:]


def path_param(payload: bytes, name: bytes) -> tuple[bytes, int, int] | None:
    """Return (value, start, end) of a query parameter within the path, or None."""
    request_path = path(payload)
    start = request_path.find(b"&" + name + b"=")
    if start == -1:
        start = request_path.find(b"?" + name + b"=")
        if start == -1:
            return None
    value_start = start + len(name) + 2
    value_end = request_path.find(b"&", value_start)
    if value_end == -1:
        value_end = len(request_path)
    return request_path[value_start:value_end], value_start, value_end


def set_path_param(payload: bytes, name: bytes, value: bytes) -> bytes:
    """Set a query parameter, appending it to the path if it is absent."""
    request_path = path(payload)
    found = path_param(payload, name)
    if found is not None:
        _, start, end = found
        return set_path(payload, request_path[:start] + value + request_path[end:])
    sep = b"?" if b"?" not in request_path else b"&"
    return set_path(payload, request_path + sep + name + b"=" + value)


def set_host(payload: bytes, url: bytes, host: bytes) -> bytes:
    """Rewrite an absolute-URL path with ``url``, otherwise set the Host header."""
    request_path = path(payload)
    if request_path.startswith(b"http"):
        host_start = request_path.find(b":") + 3
        host_end = host_start + request_path[host_start:].find(b"/")
        return set_path(payload, url + request_path[host_end:])
    return set_header(payload, b"Host", host)


def method(payload: bytes) -> bytes:
    """Return the HTTP method (text before the first space), or empty bytes."""
    end = payload.find(b" ")
    return b"" if end == -1 else payload[:end]


def status(payload: bytes) -> bytes:
    """Return the three-digit response status, or empty bytes if not a response."""
    if not has_response_title(payload):
        return b""
    start = payload.find(b" ") + 1
    return payload[start : start + 3]


def has_response_title(payload: bytes) -> bool:
    """Report whether the payload starts with an HTTP/1 response status line."""
    if len(payload) < MIN_RESPONSE_COUNT:
        return False
    if payload.find(CRLF) == -1:
        return False
    if payload[:VERSION_LEN] not in _HTTP1_VERSIONS:
        return False
    if payload[VERSION_LEN] != 0x20:
        return False
    code, ok = _atoi(payload[VERSION_LEN + 1 : VERSION_LEN + 4], 10)
    if not ok or code not in _KNOWN_STATUSES:
        return False
    return payload[VERSION_LEN + 4] in (0x20, 0x0D)


def has_request_title(payload: bytes) -> bool:
    """Report whether the payload starts with an HTTP/1 request line."""
    if len(payload) < MIN_REQUEST_COUNT:
        return False
    title_len = payload.find(CRLF)
    if title_len == -1:
        return False
    if payload.count(b" ", 0, title_len) != 2:
        return False
    request_method = method(payload)
    if request_method not in METHODS:
        return False
    space = payload.find(b" ", len(request_method) + 1)
    if space == -1:
        return False
    return payload[space + 1 : title_len] in _HTTP1_VERSIONS


def has_title(payload: bytes) -> bool:
    """Report whether the payload has an HTTP/1 request or response title."""
    return has_request_title(payload) or has_response_title(payload)


def check_chunked(buf: bytes) -> tuple[int, bool]:
    """Validate chunked-encoded data.

    Returns the length of the valid chunks scanned (sizes, extensions and
    CRLFs included) and whether the terminating zero-length chunk was seen.
    """
    chunk_end = 0
    full = False
    while chunk_end < len(buf):
        size_end = buf.find(b"\r", chunk_end)
        if size_end - chunk_end < 1:
            break
        size_field = buf[chunk_end:size_end]
        chunk_len, ok = _atoi(size_field, 16)
        if not ok and size_field.find(b";") < 1:
            break
        size_end += 1  # the '\n' after the size line
        all_chunk = size_end + chunk_len + 2
        if (
            all_chunk >= len(buf)
            or (buf[size_end] & buf[all_chunk]) != 0x0A
            or buf[all_chunk - 1] != 0x0D
        ):
            break
        chunk_end = all_chunk + 1
        if chunk_len == 0:
            full = True
            break
    return chunk_end, full


def has_full_payload(state: HTTPState | None, *args: bytes) -> bool:
    """Report whether the given payload fragments form a complete HTTP message.

    ``state`` keeps parsing progress between calls for a growing stream of
    fragments; pass None for a one-off check.
    """
    if state is None:
        state = HTTPState()
    if not args:
        return False
    if not has_request_title(args[0]) and not has_response_title(args[0]):
        return False

    if state.header_start < 1:
        state.header_start = mime_headers_start_pos(args[0])
        if state.header_start < 0:
            return False

    if state.body < 1 or state.header_end < 1:
        pos = 0
        for data in args:
            end = mime_headers_end_pos(data)
            if end < 0:
                pos += len(data)
            else:
                pos += end
                state.header_end = pos
            if end > 0:
                state.body = pos
                break

    if state.header_end < 1:
        return False

    if not state.header_parsed:
        pos = 0
        for data in args:
            if header(data, b"Transfer-Encoding") and data.find(b"chunked") > 0:
                state.is_chunked = True
                state.has_trailer = len(header(data, b"Trailer")) > 0
            else:
                state.body_len, _ = _atoi(header(data, b"Content-Length"), 10)
            pos += len(data)
            if header(data, b"Expect") == b"100-continue":
                state.continue100 = True
            if state.body_len > 0 or pos >= state.body:
                state.header_parsed = True
                break

    body_len = sum(len(data) for data in args) - state.body

    if state.is_chunked:
        if body_len < 1:
            return False
        last = args[-1]
        if state.has_trailer:
            return last.endswith(b"\r\n\r\n")
        if last.endswith(b"0\r\n\r\n"):
            state.has_full_payload = True
            return True
        return False

    return state.body_len == body_len