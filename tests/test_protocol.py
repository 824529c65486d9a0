import io

import pytest

from trafficreplay.protocol import (
    PAYLOAD_SEPARATOR,
    Message,
    PayloadType,
    StoppedError,
    extract_limit_options,
    is_origin_payload,
    is_request_payload,
    iter_payloads,
    new_uuid,
    payload_body,
    payload_header,
    payload_id,
    payload_meta,
    payload_meta_with_body,
    rand_hex,
)


def test_payload_header_example():
    header = payload_header(
        PayloadType.REPLAYED_RESPONSE,
        b"f45590522cd1838b4a0d5c5aab80b77929dea3b3",
        13923489726487326,
        1231,
    )
    assert header == b"3 f45590522cd1838b4a0d5c5aab80b77929dea3b3 13923489726487326 1231\n"


def test_payload_header_fields_round_trip():
    uid = new_uuid()
    header = payload_header(PayloadType.REQUEST, uid, 42, -1)
    assert payload_meta(header) == [b"1", uid, b"42", b"-1"]
    assert payload_id(header) == uid


def test_rand_hex_length_and_digits():
    value = rand_hex(24)
    assert len(value) == 24
    assert all(c in b"0123456789abcdef" for c in value)


def test_uuids_are_distinct():
    ids = {new_uuid() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(i) == 24 for i in ids)


@pytest.mark.parametrize(
    "payloads",
    [[b"one"], [b"one", b"two", b"three"], [b"1 a 1\nGET / HTTP/1.1\r\n\r\n", b"x" * 100000]],
)
def test_iter_payloads_round_trip(payloads):
    stream = io.BytesIO(PAYLOAD_SEPARATOR.join(payloads))
    assert list(iter_payloads(stream)) == payloads


def test_iter_payloads_trailing_separator():
    stream = io.BytesIO(b"a" + PAYLOAD_SEPARATOR + b"b" + PAYLOAD_SEPARATOR)
    assert list(iter_payloads(stream)) == [b"a", b"b"]


def test_iter_payloads_empty_stream():
    assert list(iter_payloads(io.BytesIO(b""))) == []


def test_payload_body():
    data = b"GET / HTTP/1.1\r\n\r\n"
    assert payload_body(b"1 id 1\n" + data) == data


def test_payload_meta_without_newline():
    assert payload_meta(b"1 id 1") == []
    assert payload_id(b"1 id 1") == b""


def test_payload_meta_with_body():
    meta, body = payload_meta_with_body(b"1 id 1\nbody")
    assert meta == b"1 id 1\n"
    assert body == b"body"


@pytest.mark.parametrize("payload", [b"no meta", b"1 id 1\n", b"\nbody"])
def test_payload_meta_with_body_missing_meta(payload):
    assert payload_meta_with_body(payload) == (None, payload)


def test_payload_kinds():
    assert is_origin_payload(b"1 x 1\n")
    assert is_origin_payload(b"2 x 1\n")
    assert not is_origin_payload(b"3 x 1\n")
    assert is_request_payload(b"1 x 1\n")
    assert not is_request_payload(b"2 x 1\n")


def test_extract_limit_options():
    assert extract_limit_options("www.example.com|10") == ("www.example.com", "10")
    assert extract_limit_options("www.example.com") == ("www.example.com", "")


def test_message_holds_fields():
    msg = Message(meta=b"1 a 1\n", data=b"GET")
    assert msg.meta + msg.data == b"1 a 1\nGET"


def test_stopped_error_carries_message():
    err = StoppedError("stopped")
    assert isinstance(err, Exception)
    assert str(err) == "stopped"