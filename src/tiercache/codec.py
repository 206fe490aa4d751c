"""Value codecs used at the disk-tier boundary.

A codec turns a value into bytes and back.  :class:`JsonCodec` is generic
over any type pydantic can validate (built-ins, dataclasses, ``BaseModel``
subclasses, ``list[Model]`` and so on) and is the default.
:class:`PickleCodec` stores arbitrary Python objects and must only be used on
storage that is not writable by untrusted parties.

Both raise :class:`~tiercache.exceptions.EncodingError` and
:class:`~tiercache.exceptions.DecodingError`; neither has side effects.
"""

from __future__ import annotations

import pickle
from typing import Any, Generic, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from tiercache.exceptions import DecodingError, EncodingError

T = TypeVar("T")


class Codec(Protocol[T]):
    """Serialize/deserialize capability pair for values of type ``T``."""

    def encode(self, value: T) -> bytes: ...

    def decode(self, data: bytes) -> T: ...


class JsonCodec(Generic[T]):
    """JSON codec backed by a :class:`pydantic.TypeAdapter`.

    Encoding rejects values that do not match ``type_`` and decoding
    validates the payload against it, so a value of the wrong type surfaces
    as an :class:`EncodingError` or :class:`DecodingError` instead of being
    stored or returned.

    Args:
        type_: The value type.  Defaults to ``Any`` (plain JSON values).

    Example::

        codec = JsonCodec(list[int])
        codec.decode(codec.encode([1, 2, 3]))
    """

    def __init__(self, type_: Any = Any) -> None:
        self._type = type_
        self._adapter: TypeAdapter[T] = TypeAdapter(type_)

    def encode(self, value: T) -> bytes:
        try:
            return self._adapter.dump_json(value, warnings="error")
        except (PydanticSerializationError, ValueError, TypeError) as exc:
            raise EncodingError(f"Cannot encode {type(value).__name__} as JSON: {exc}") from exc

    def decode(self, data: bytes) -> T:
        try:
            return self._adapter.validate_json(data)
        except ValidationError as exc:
            raise DecodingError(f"Stored payload is not a valid {self._type!r}: {exc}") from exc

    def __repr__(self) -> str:
        return f"JsonCodec({self._type!r})"


class PickleCodec(Generic[T]):
    """Codec for arbitrary picklable objects."""

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL) -> None:
        self._protocol = protocol

    def encode(self, value: T) -> bytes:
        try:
            return pickle.dumps(value, protocol=self._protocol)
        except (pickle.PicklingError, AttributeError, TypeError) as exc:
            raise EncodingError(f"Cannot pickle {type(value).__name__}: {exc}") from exc

    def decode(self, data: bytes) -> T:
        try:
            return pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError) as exc:
            raise DecodingError(f"Stored payload is not a valid pickle: {exc}") from exc
