import queue
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from trafficreplay.output_http import MAX_WORKERS, HTTPClient, HTTPOutput, HTTPOutputConfig
from trafficreplay.protocol import Message, PayloadType, StoppedError, new_uuid, payload_header

POST = b"POST /post HTTP/1.1\r\nUser-Agent: Gor\r\nContent-Length: 7\r\nHost: www.w3.org\r\n\r\na=1&b=2"
GET = b"GET / HTTP/1.1\r\nUser-Agent: Gor\r\nHost: www.w3.org\r\n\r\n"


class _Recorder(BaseHTTPRequestHandler):
    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length)
        self.server.received.put(
            {
                "method": self.command,
                "path": self.path,
                "host": self.headers.get("Host"),
                "agent": self.headers.get("User-Agent"),
                "body": body,
            }
        )
        if self.path.startswith("/redirect"):
            self.send_response(302)
            self.send_header("Location", "/target")
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        self.send_response(200)
        self.send_header("Content-Length", "2")
        self.end_headers()
        self.wfile.write(b"ok")

    do_GET = do_POST = do_PUT = do_DELETE = _handle

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Recorder)
    srv.received = queue.Queue()
    threading.Thread(target=srv.serve_forever, daemon=True).start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _url(srv):
    return f"http://127.0.0.1:{srv.server_address[1]}"


def _request(data, uuid=None):
    return Message(payload_header(PayloadType.REQUEST, uuid or new_uuid(), time.time_ns(), -1), data)


def test_client_sends_post_body_and_headers(server):
    client = HTTPClient(_url(server), HTTPOutputConfig())
    assert client.send(POST) is None
    got = server.received.get(timeout=5)
    assert got["method"] == "POST"
    assert got["path"] == "/post"
    assert got["agent"] == "Gor"
    assert got["body"] == b"a=1&b=2"


def test_client_returns_dumped_response_when_tracking(server):
    client = HTTPClient(_url(server), HTTPOutputConfig(track_responses=True))
    dumped = client.send(GET)
    assert dumped.startswith(b"HTTP/1.0 200 OK\r\n")
    assert dumped.endswith(b"\r\n\r\nok")


def test_client_skips_connect(server):
    client = HTTPClient(_url(server), HTTPOutputConfig(track_responses=True))
    assert client.send(b"CONNECT www.w3.org:443 HTTP/1.1\r\nHost: www.w3.org\r\n\r\n") is None
    assert server.received.empty()


def test_client_rejects_malformed_request(server):
    client = HTTPClient(_url(server), HTTPOutputConfig())
    with pytest.raises(ValueError):
        client.send(b"not a request")


def test_client_replaces_host(server):
    client = HTTPClient(_url(server), HTTPOutputConfig())
    client.send(b"GET / HTTP/1.1\r\nHost: custom-host.com\r\n\r\n")
    assert server.received.get(timeout=5)["host"] == f"127.0.0.1:{server.server_address[1]}"


def test_client_keeps_original_host(server):
    client = HTTPClient(_url(server), HTTPOutputConfig(original_host=True))
    client.send(b"GET / HTTP/1.1\r\nHost: custom-host.com\r\n\r\n")
    assert server.received.get(timeout=5)["host"] == "custom-host.com"


def test_client_uses_configured_path(server):
    client = HTTPClient(_url(server) + "/fixed?x=1", HTTPOutputConfig())
    client.send(b"GET /other HTTP/1.1\r\n\r\n")
    assert server.received.get(timeout=5)["path"] == "/fixed?x=1"


def test_client_decodes_chunked_body(server):
    client = HTTPClient(_url(server), HTTPOutputConfig())
    client.send(b"POST /c HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n4\r\nWiki\r\n0\r\n\r\n")
    assert server.received.get(timeout=5)["body"] == b"Wiki"


def test_client_redirect_limit_one_does_not_follow(server):
    client = HTTPClient(_url(server), HTTPOutputConfig(redirect_limit=1, track_responses=True))
    dumped = client.send(b"GET /redirect HTTP/1.1\r\n\r\n")
    assert b" 302 " in dumped.split(b"\r\n")[0]
    assert server.received.get(timeout=5)["path"] == "/redirect"
    assert server.received.empty()


def test_client_redirect_limit_two_follows_once(server):
    client = HTTPClient(_url(server), HTTPOutputConfig(redirect_limit=2, track_responses=True))
    dumped = client.send(b"GET /redirect HTTP/1.1\r\n\r\n")
    assert dumped.startswith(b"HTTP/1.0 200 OK")
    paths = [server.received.get(timeout=5)["path"] for _ in range(2)]
    assert paths == ["/redirect", "/target"]


def test_config_normalization(server):
    config = HTTPOutputConfig(
        workers_min=0, workers_max=0, timeout=0.01, queue_len=0, redirect_limit=-3, worker_timeout=0
    )
    output = HTTPOutput(_url(server), config)
    try:
        assert output.config.workers_min == 1
        assert output.config.workers_max == MAX_WORKERS
        assert output.config.timeout == 1.0
        assert output.config.queue_len == 1000
        assert output.config.redirect_limit == 0
        assert output.config.worker_timeout == 2.0
    finally:
        output.close()


def test_config_worker_bounds(server):
    output = HTTPOutput(_url(server), HTTPOutputConfig(workers_min=5000, workers_max=3))
    try:
        assert output.config.workers_min == 1000
        assert output.config.workers_max == 1000
    finally:
        output.close()


def test_output_replays_requests(server):
    with HTTPOutput(_url(server), HTTPOutputConfig()) as output:
        for _ in range(10):
            assert output.plugin_write(_request(POST)) > len(POST)
            output.plugin_write(_request(GET))
        got = [server.received.get(timeout=5) for _ in range(20)]
    assert sum(item["method"] == "POST" for item in got) == 10
    assert all(item["body"] == b"a=1&b=2" for item in got if item["method"] == "POST")


def test_output_sessions(server):
    with HTTPOutput(_url(server), HTTPOutputConfig()) as output:
        for prefix in (b"1234567890123456789a", b"1234567890123456789d"):
            for i in range(10):
                output.plugin_write(_request(b"GET / HTTP/1.1\r\n\r\n", prefix + b"%04d" % i))
        got = [server.received.get(timeout=5) for _ in range(20)]
    assert all(item["path"] == "/" for item in got)


def test_output_tracks_responses(server):
    uuid = b"abcdef0123456789abcdef01"
    with HTTPOutput(_url(server), HTTPOutputConfig(track_responses=True)) as output:
        output.plugin_write(_request(GET, uuid))
        reply = output.plugin_read()
    assert reply.meta.startswith(b"3 " + uuid + b" ")
    assert reply.data.startswith(b"HTTP/1.0 200 OK")


def test_output_skips_non_request_payload(server):
    with HTTPOutput(_url(server), HTTPOutputConfig()) as output:
        msg = Message(payload_header(PayloadType.RESPONSE, new_uuid(), 1, 1), b"HTTP/1.1 200 OK\r\n\r\n")
        assert output.plugin_write(msg) == len(msg.data)
        assert output._queue.empty()


def test_output_read_without_tracking_raises(server):
    with HTTPOutput(_url(server), HTTPOutputConfig()) as output:
        with pytest.raises(StoppedError):
            output.plugin_read()


def test_output_closed_raises(server):
    output = HTTPOutput(_url(server), HTTPOutputConfig(track_responses=True))
    output.close()
    with pytest.raises(StoppedError):
        output.plugin_write(_request(GET))
    with pytest.raises(StoppedError):
        output.plugin_read()


def test_output_str(server):
    with HTTPOutput(_url(server), HTTPOutputConfig()) as output:
        assert str(output) == "HTTP output: " + _url(server)