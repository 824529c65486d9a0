"""Output that replays request payloads against an HTTP server."""

from __future__ import annotations

import http.client
import logging
import queue
import ssl
import threading
import time
from dataclasses import dataclass, replace
from urllib.parse import SplitResult, urljoin, urlsplit, urlunsplit

from .protocol import (
    Message,
    PayloadType,
    StoppedError,
    is_request_payload,
    payload_header,
    payload_id,
)

logger = logging.getLogger(__name__)

MAX_WORKERS = 2**31 - 1
_POLL_INTERVAL = 0.1
_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})
_SKIPPED_HEADERS = frozenset({"host", "content-length", "transfer-encoding", "connection"})
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass
class HTTPOutputConfig:
    """HTTP output settings; timeouts are in seconds.

    ``workers_max`` of 0 means no upper limit on workers.
    """

    track_responses: bool = False
    stats: bool = False
    original_host: bool = False
    redirect_limit: int = 0
    workers_min: int = 0
    workers_max: int = 0
    queue_len: int = 1000
    timeout: float = 5.0
    worker_timeout: float = 2.0
    skip_verify: bool = False


def _normalized(config: HTTPOutputConfig) -> HTTPOutputConfig:
    config = replace(config)
    if config.timeout < 0.1:
        config.timeout = 1.0
    config.workers_min = min(max(config.workers_min, 1), 1000)
    if config.workers_max <= 0:
        config.workers_max = MAX_WORKERS
    config.workers_max = max(config.workers_max, config.workers_min)
    if config.queue_len <= 0:
        config.queue_len = 1000
    config.redirect_limit = max(config.redirect_limit, 0)
    if config.worker_timeout <= 0:
        config.worker_timeout = 2.0
    return config


def _parse_url(address: str) -> SplitResult:
    if "://" not in address:
        address = "http://" + address
    try:
        return urlsplit(address)
    except ValueError as exc:
        raise ValueError(f"[OUTPUT-HTTP] parse HTTP output URL error[{exc}]") from exc


@dataclass
class _Request:
    method: str
    target: str
    headers: list[tuple[str, str]]
    body: bytes

    def header(self, name: str) -> str:
        wanted = name.lower()
        return next((value for key, value in self.headers if key.lower() == wanted), "")


def _decode_chunked(data: bytes) -> bytes:
    out = bytearray()
    pos = 0
    while True:
        line_end = data.find(b"\r\n", pos)
        if line_end < 0:
            raise ValueError("truncated chunked body")
        size = int(data[pos:line_end].split(b";")[0].strip(), 16)
        pos = line_end + 2
        if size == 0:
            return bytes(out)
        if len(data) < pos + size:
            raise ValueError("truncated chunked body")
        out += data[pos : pos + size]
        pos += size + 2


def _parse_request(data: bytes) -> _Request:
    head_end = data.find(b"\r\n\r\n")
    if head_end < 0:
        raise ValueError("incomplete request headers")
    lines = data[:head_end].split(b"\r\n")
    parts = lines[0].split(b" ")
    if len(parts) != 3 or not parts[0] or not parts[2].startswith(b"HTTP/1."):
        raise ValueError(f"malformed request line: {lines[0]!r}")
    headers = []
    for line in lines[1:]:
        name, sep, value = line.partition(b":")
        if not sep or not name.strip():
            raise ValueError(f"malformed header line: {line!r}")
        headers.append((name.strip().decode("latin-1"), value.strip().decode("latin-1")))
    request = _Request(parts[0].decode("latin-1"), parts[1].decode("latin-1"), headers, b"")
    rest = data[head_end + 4 :]
    if "chunked" in request.header("Transfer-Encoding").lower():
        request.body = _decode_chunked(rest)
    elif request.header("Content-Length"):
        length = int(request.header("Content-Length"))
        if len(rest) < length:
            raise ValueError("unexpected end of request body")
        request.body = rest[:length]
    return request


def _dump_response(response: http.client.HTTPResponse, content: bytes) -> bytes:
    version = "HTTP/1.0" if response.version == 10 else "HTTP/1.1"
    lines = [f"{version} {response.status} {response.reason}"]
    chunked = False
    for name, value in response.getheaders():
        if name.lower() == "transfer-encoding":
            chunked = True
            continue
        lines.append(f"{name}: {value}")
    if chunked:
        lines.append(f"Content-Length: {len(content)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + content


class HTTPClient:
    """Replays raw request payloads against a fixed target URL."""

    def __init__(self, address: str, config: HTTPOutputConfig) -> None:
        self.config = config
        self.url = _parse_url(address)

    def send(self, data: bytes) -> bytes | None:
        """Send a raw request; return the dumped response when tracking responses.

        CONNECT requests are not sent. A malformed payload raises ValueError.
        """
        request = _parse_request(data)
        if request.method == "CONNECT":
            return None

        target = request.target
        if target.startswith(("http://", "https://")):
            absolute = urlsplit(target)
            target = (absolute.path or "/") + (f"?{absolute.query}" if absolute.query else "")
        if self.url.path == "" and self.url.query == "":
            path = target
        else:
            path = (self.url.path or "/") + (f"?{self.url.query}" if self.url.query else "")

        host = self.url.netloc
        if self.config.original_host:
            host = request.header("Host") or host

        response, content = self._follow(
            request.method, self.url.scheme, self.url.netloc, path, host, request
        )
        if self.config.track_responses:
            return _dump_response(response, content)
        return None

    def _follow(
        self, method: str, scheme: str, netloc: str, path: str, host: str, request: _Request
    ) -> tuple[http.client.HTTPResponse, bytes]:
        body = request.body
        made = 1
        while True:
            response, content = self._round_trip(
                method, scheme, netloc, path, host, request.headers, body
            )
            location = response.getheader("Location")
            if response.status not in _REDIRECT_CODES or not location:
                return response, content
            if made >= self.config.redirect_limit:
                logger.debug(
                    "[HTTPCLIENT] maximum output-http-redirects[%d] reached!",
                    self.config.redirect_limit,
                )
                return response, content
            made += 1
            next_url = urlsplit(urljoin(f"{scheme}://{netloc}{path}", location))
            logger.debug(
                "[HTTPCLIENT] HTTP redirects from %r to %r with %r",
                netloc, next_url.netloc, f"{response.status} {response.reason}",
            )
            if response.status in (301, 302, 303) and method not in ("GET", "HEAD"):
                method = "GET"
                body = b""
            scheme, netloc = next_url.scheme, next_url.netloc
            host = netloc
            path = (next_url.path or "/") + (f"?{next_url.query}" if next_url.query else "")

    def _round_trip(
        self,
        method: str,
        scheme: str,
        netloc: str,
        path: str,
        host: str,
        headers: list[tuple[str, str]],
        body: bytes,
    ) -> tuple[http.client.HTTPResponse, bytes]:
        conn: http.client.HTTPConnection
        if scheme == "https":
            context = ssl.create_default_context()
            if self.config.skip_verify:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            conn = http.client.HTTPSConnection(netloc, timeout=self.config.timeout, context=context)
        else:
            conn = http.client.HTTPConnection(netloc, timeout=self.config.timeout)
        try:
            conn.putrequest(method, path, skip_host=True, skip_accept_encoding=True)
            conn.putheader("Host", host)
            for name, value in headers:
                if name.lower() not in _SKIPPED_HEADERS:
                    conn.putheader(name, value)
            if body or method in _BODY_METHODS:
                conn.putheader("Content-Length", str(len(body)))
            conn.endheaders(body or None)
            response = conn.getresponse()
            content = response.read()
        finally:
            conn.close()
        return response, content


class HTTPOutput:
    """Replays requests through a dynamically sized pool of worker threads."""

    def __init__(self, address: str, config: HTTPOutputConfig | None = None) -> None:
        self.config = _normalized(config or HTTPOutputConfig())
        self.client = HTTPClient(address, self.config)
        self.raw_url = urlunsplit(self.client.url)
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._queue: queue.Queue[Message] = queue.Queue(maxsize=self.config.queue_len)
        self._responses: queue.Queue[Message] = queue.Queue(maxsize=self.config.queue_len)
        self._active = self.config.workers_min
        self._retire = 0
        for _ in range(self.config.workers_min):
            self._spawn()
        threading.Thread(target=self._worker_master, daemon=True).start()

    def __enter__(self) -> HTTPOutput:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __str__(self) -> str:
        return "HTTP output: " + self.raw_url

    @property
    def active_workers(self) -> int:
        with self._lock:
            return self._active

    def _spawn(self) -> None:
        threading.Thread(target=self._worker, daemon=True).start()

    def _worker_master(self) -> None:
        while not self._stopped.wait(self.config.worker_timeout):
            with self._lock:
                while self._active > self.config.workers_min and self._queue.empty():
                    self._active -= 1
                    self._retire += 1

    def _worker(self) -> None:
        while not self._stopped.is_set():
            with self._lock:
                if self._retire:
                    self._retire -= 1
                    return
            try:
                msg = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self._send_request(msg)

    def plugin_write(self, msg: Message) -> int:
        """Queue a request payload; other payloads are skipped."""
        if not is_request_payload(msg.meta):
            return len(msg.data)
        while True:
            if self._stopped.is_set():
                raise StoppedError("HTTP output is stopped")
            try:
                self._queue.put(msg, timeout=_POLL_INTERVAL)
                break
            except queue.Full:
                continue
        if self.config.stats:
            logger.info("output_http queue length: %d", self._queue.qsize())
        if self._queue.qsize() > 0:
            with self._lock:
                if self._active < self.config.workers_max:
                    self._active += 1
                    self._spawn()
        return len(msg.data) + len(msg.meta)

    def plugin_read(self) -> Message:
        """Return the next replayed response; raise StoppedError when not tracking or stopped."""
        if not self.config.track_responses:
            raise StoppedError("HTTP output does not track responses")
        while not self._stopped.is_set():
            try:
                return self._responses.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
        raise StoppedError("HTTP output is stopped")

    def _send_request(self, msg: Message) -> None:
        if not is_request_payload(msg.meta):
            return
        uuid = payload_id(msg.meta)
        start = time.time_ns()
        try:
            response = self.client.send(msg.data)
        except (OSError, ValueError, http.client.HTTPException) as exc:
            logger.debug("[HTTP-OUTPUT] error when sending: %r", exc)
            return
        stop = time.time_ns()
        if response is None or not self.config.track_responses:
            return
        replayed = Message(
            meta=payload_header(PayloadType.REPLAYED_RESPONSE, uuid, start, stop - start),
            data=response,
        )
        while not self._stopped.is_set():
            try:
                self._responses.put(replayed, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def close(self) -> None:
        """Stop all workers; further writes and reads raise StoppedError."""
        self._stopped.set()