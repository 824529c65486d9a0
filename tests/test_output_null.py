from trafficreplay.output_null import NullOutput
from trafficreplay.protocol import Message


def test_plugin_write_reports_full_size():
    msg = Message(meta=b"1 abc 1\n", data=b"GET / HTTP/1.1\r\n\r\n")
    assert NullOutput().plugin_write(msg) == len(msg.meta) + len(msg.data)


def test_plugin_write_empty_message():
    assert NullOutput().plugin_write(Message()) == 0


def test_str():
    assert str(NullOutput()) == "Null Output"