# trafficreplay

`trafficreplay` works with recorded HTTP traffic: it reads and rewrites raw
HTTP/1.x payloads at the byte level, frames recorded messages with a one-line
meta header, and replays recorded requests against an HTTP server.

It has no third-party dependencies.

## What is inside

- `trafficreplay.proto` — byte-level helpers for HTTP/1.x payloads:
  `header`, `find_header`, `set_header`, `add_header` and `delete_header`;
  `path`, `set_path`, `path_param` and `set_path_param`; `set_host`;
  `method` and `status`; `parse_headers` and `get_headers`; `body`;
  `has_request_title`, `has_response_title` and `has_title`;
  `check_chunked` to validate a chunked body; and `has_full_payload`, which
  decides from one or more fragments (and an optional `HTTPState` kept between
  calls) whether a message has arrived in full.
- `trafficreplay.protocol` — the framing of recorded messages: the `Message`
  record passed between plugins, `PayloadType`, `payload_header`,
  `payload_meta`, `payload_id`, `payload_body`, `payload_meta_with_body`,
  `is_request_payload`, `is_origin_payload`, `new_uuid`, `iter_payloads` to
  split a binary stream on the payload separator, `extract_limit_options` to
  split an `"address|limit"` option, and `StoppedError`.
- `trafficreplay.output_null` — `NullOutput`, which accepts and drops messages.
- `trafficreplay.output_http` — `HTTPOutput`, which replays recorded requests
  against an HTTP server with a dynamically sized pool of worker threads and
  can hand back the replayed responses; `HTTPClient`, which sends a single raw
  request payload; and `HTTPOutputConfig`.

## Rewriting a payload

```python
from trafficreplay import proto

payload = b"POST /post?param=test HTTP/1.1\r\nContent-Length: 7\r\nHost: www.w3.org\r\n\r\na=1&b=2"

proto.header(payload, b"Content-Length")        # b"7"
proto.path(payload)                             # b"/post?param=test"

payload = proto.set_header(payload, b"User-Agent", b"Gor")
payload = proto.set_path_param(payload, b"user_id", b"1")
proto.path(payload)                             # b"/post?param=test&user_id=1"
```

Functions that look something up return empty bytes when it is absent;
`path_param` returns `None`, and `set_path` raises `ValueError` on a payload
without an HTTP title line.

## Reading message meta

Every recorded message starts with a meta line of the form
`<type> <id> <timestamp> <latency>\n`:

```python
from trafficreplay.protocol import payload_id, payload_meta, is_request_payload

meta = b"1 f45590522cd1838b4a0d5c5aab80b77929dea3b3 13923489726487326 1231\n"

payload_id(meta)          # b"f45590522cd1838b4a0d5c5aab80b77929dea3b3"
payload_meta(meta)[2]     # b"13923489726487326"
is_request_payload(meta)  # True
```

## Replaying requests over HTTP

```python
import time

from trafficreplay.output_http import HTTPOutput, HTTPOutputConfig
from trafficreplay.protocol import Message, PayloadType, new_uuid, payload_header

config = HTTPOutputConfig(track_responses=True, timeout=5.0)
with HTTPOutput("http://localhost:8080", config) as output:
    output.plugin_write(Message(
        meta=payload_header(PayloadType.REQUEST, new_uuid(), time.time_ns(), -1),
        data=b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n",
    ))
    response = output.plugin_read()   # meta type 3: a replayed response
```

`plugin_write` queues request payloads and skips every other kind, returning
the number of bytes accepted. The Host header is replaced by the target's host
unless `original_host` is set; redirects are followed up to `redirect_limit`;
CONNECT requests are not sent. `workers_max` of 0 means no upper limit on
workers, and idle workers beyond `workers_min` are retired after
`worker_timeout` seconds. `plugin_read` raises `StoppedError` when responses
are not tracked, and both methods raise it once `close()` has been called.

## What it does not do

The package does not capture traffic from a network interface, read or write
recording files, or forward messages over plain TCP or WebSocket; the only
replay target it supports is an HTTP server. It has no command-line program:
it is used as a library.