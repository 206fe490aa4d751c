"""Tests for JsonCodec and PickleCodec."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import BaseModel

from tiercache.codec import JsonCodec, PickleCodec
from tiercache.exceptions import CodecError, DecodingError, EncodingError


class User(BaseModel):
    id: int
    name: str
    tags: list[str] = []


class TestJsonCodec:
    @pytest.mark.parametrize(
        "value",
        [
            {"a": 1, "b": [1, 2, 3]},
            ["x", None, 1.5],
            "plain string",
            42,
            None,
            True,
        ],
    )
    def test_any_values_round_trip(self, value: Any) -> None:
        codec = JsonCodec()
        assert codec.decode(codec.encode(value)) == value

    def test_encode_produces_json_bytes(self) -> None:
        assert JsonCodec().encode({"k": "v"}) == b'{"k":"v"}'

    def test_typed_model_round_trip(self) -> None:
        codec = JsonCodec(User)
        user = User(id=1, name="Ada", tags=["admin"])
        decoded = codec.decode(codec.encode(user))
        assert isinstance(decoded, User)
        assert decoded == user

    def test_typed_list_round_trip(self) -> None:
        codec = JsonCodec(list[int])
        assert codec.decode(codec.encode([3, 2, 1])) == [3, 2, 1]

    def test_malformed_bytes_raise_decoding_error(self) -> None:
        with pytest.raises(DecodingError):
            JsonCodec().decode(b"{not json")

    def test_type_mismatch_raises_decoding_error(self) -> None:
        with pytest.raises(DecodingError):
            JsonCodec(int).decode(b'"abc"')

    def test_payload_for_other_model_raises_decoding_error(self) -> None:
        with pytest.raises(DecodingError):
            JsonCodec(User).decode(b'{"id": "not-a-number"}')

    def test_unserializable_value_raises_encoding_error(self) -> None:
        with pytest.raises(EncodingError):
            JsonCodec().encode(object())

    @pytest.mark.parametrize(
        ("type_", "value"),
        [(int, "not-an-int"), (list[int], ["a", "b"]), (str, 42)],
    )
    def test_value_of_wrong_type_raises_encoding_error(self, type_: Any, value: Any) -> None:
        with pytest.raises(EncodingError):
            JsonCodec(type_).encode(value)

    def test_codec_errors_share_base_class(self) -> None:
        assert issubclass(EncodingError, CodecError)
        assert issubclass(DecodingError, CodecError)


class TestPickleCodec:
    def test_round_trip_python_objects(self) -> None:
        codec = PickleCodec()
        value = {"set": {1, 2}, "tuple": (1, "a"), "bytes": b"\x00\x01"}
        assert codec.decode(codec.encode(value)) == value

    def test_garbage_raises_decoding_error(self) -> None:
        with pytest.raises(DecodingError):
            PickleCodec().decode(b"definitely not a pickle")

    def test_truncated_payload_raises_decoding_error(self) -> None:
        data = PickleCodec().encode(list(range(100)))
        with pytest.raises(DecodingError):
            PickleCodec().decode(data[: len(data) // 2])

    def test_unpicklable_value_raises_encoding_error(self) -> None:
        with pytest.raises(EncodingError):
            PickleCodec().encode(lambda: None)
