import json
from dataclasses import dataclass

import pytest

from flowcollect.formats import (
    BinaryDriver,
    DriverFormatError,
    Format,
    FormatDriver,
    FormatError,
    JsonDriver,
    NoSerializerError,
    TextDriver,
    find_format,
    get_formats,
    register_format_driver,
)


class Keyed:
    def key(self):
        return b"k1"

    def marshal_text(self):
        return "text-form"

    def marshal_binary(self):
        return b"\x00\x01"


@dataclass
class Point:
    x: int
    raw: bytes


def test_builtin_formats_registered():
    names = get_formats()
    assert {"bin", "json", "text"} <= set(names)


def test_find_missing_format():
    with pytest.raises(FormatError) as exc:
        find_format("does-not-exist")
    assert "does-not-exist not found" in str(exc.value)


def test_json_round_trip():
    fmt = find_format("json")
    key, text = fmt.format({"a": 1, "b": [1, 2]})
    assert key is None
    assert json.loads(text) == {"a": 1, "b": [1, 2]}


def test_json_dataclass_and_bytes():
    _, text = JsonDriver().format(Point(x=3, raw=b"ab"))
    decoded = json.loads(text)
    assert decoded["x"] == 3
    import base64

    assert base64.b64decode(decoded["raw"]) == b"ab"


def test_json_uses_to_json():
    class Custom:
        def to_json(self):
            return '{"custom":true}'

    _, text = JsonDriver().format(Custom())
    assert json.loads(text) == {"custom": True}


def test_json_unserialisable_wrapped():
    fmt = find_format("json")
    with pytest.raises(DriverFormatError) as exc:
        fmt.format(object())
    assert exc.value.driver == "json"
    assert isinstance(exc.value.err, TypeError)


def test_text_driver_uses_marshal_text_and_key():
    key, text = TextDriver().format(Keyed())
    assert key == b"k1"
    assert text == b"text-form"


def test_text_driver_uses_str():
    class Named:
        def __str__(self):
            return "named"

    _, text = TextDriver().format(Named())
    assert text == b"named"


def test_text_not_serializable():
    fmt = find_format("text")
    with pytest.raises(DriverFormatError) as exc:
        fmt.format(object())
    assert isinstance(exc.value.err, NoSerializerError)
    assert isinstance(exc.value, FormatError)
    assert str(exc.value) == "message is not serializable for text format"


def test_binary_driver():
    assert BinaryDriver().format(Keyed()) == (b"k1", b"\x00\x01")
    assert BinaryDriver().format(b"raw") == (None, b"raw")


def test_binary_not_serializable():
    fmt = find_format("bin")
    with pytest.raises(DriverFormatError) as exc:
        fmt.format(object())
    assert str(exc.value) == "message is not serializable for bin format"


def test_custom_driver_lifecycle():
    calls = []

    class Recording(FormatDriver):
        def prepare(self):
            calls.append("prepare")

        def init(self):
            calls.append("init")

        def format(self, data):
            return None, repr(data).encode()

    register_format_driver("recording-test", Recording())
    assert calls == ["prepare"]
    fmt = find_format("recording-test")
    assert calls == ["prepare", "init"]
    assert isinstance(fmt, Format)
    assert fmt.format(5) == (None, b"5")
    assert "recording-test" in get_formats()


def test_init_failure_wrapped():
    class Failing(FormatDriver):
        def init(self):
            raise ValueError("cannot start")

        def format(self, data):
            return None, b""

    register_format_driver("failing-test", Failing())
    with pytest.raises(DriverFormatError) as exc:
        find_format("failing-test")
    assert str(exc.value) == "cannot start for failing-test format"
    assert isinstance(exc.value.__cause__, ValueError)