"""Order-preserving key codecs.

Every codec is self-delimiting: the encoding of a key is never a strict prefix
of the encoding of another key of the same codec. Together with the composite
layout (parent bytes followed by a fixed-width sequence) this makes the encoded
parent key an exact prefix of all of its children, and of nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, get_args, get_origin, runtime_checkable

from kinstore.errors import MalformedKey

_ESCAPE = b"\x00"
_ESCAPED_NUL = b"\x00\xff"
_TERMINATOR = b"\x00\x01"


@runtime_checkable
class KeyCodec(Protocol):
    """Converts a typed key to order-preserving bytes and back."""

    def encode(self, key: Any) -> bytes: ...

    def decode(self, data: bytes) -> Any: ...

    def read(self, data: bytes, offset: int = 0) -> tuple[Any, int]: ...


class _Codec:
    def read(self, data: bytes, offset: int = 0) -> tuple[Any, int]:
        raise NotImplementedError

    def decode(self, data: bytes) -> Any:
        value, end = self.read(bytes(data), 0)
        if end != len(data):
            raise MalformedKey(
                f"{self!r}: {len(data) - end} trailing byte(s) after key of length {end}"
            )
        return value


@dataclass(frozen=True)
class IntKey(_Codec):
    """Fixed-width big-endian integer. Signed keys have their sign bit flipped."""

    width: int
    signed: bool = False

    @property
    def bits(self) -> int:
        return self.width * 8

    @property
    def min_value(self) -> int:
        return -(1 << (self.bits - 1)) if self.signed else 0

    @property
    def max_value(self) -> int:
        return (1 << (self.bits - 1)) - 1 if self.signed else (1 << self.bits) - 1

    def encode(self, key: Any) -> bytes:
        if isinstance(key, bool) or not isinstance(key, int):
            raise MalformedKey(f"{self!r} expects an int key, got {type(key).__name__}")
        if not self.min_value <= key <= self.max_value:
            raise MalformedKey(f"Key {key} out of range for {self!r}")
        if self.signed:
            key += 1 << (self.bits - 1)
        return key.to_bytes(self.width, "big")

    def read(self, data: bytes, offset: int = 0) -> tuple[int, int]:
        end = offset + self.width
        if end > len(data):
            raise MalformedKey(
                f"{self!r}: expected {self.width} bytes at offset {offset}, "
                f"got {len(data) - offset}"
            )
        value = int.from_bytes(data[offset:end], "big")
        if self.signed:
            value -= 1 << (self.bits - 1)
        return value, end

    def __repr__(self) -> str:
        return f"{'i' if self.signed else 'u'}{self.bits}"


def _escape(data: bytes) -> bytes:
    return data.replace(_ESCAPE, _ESCAPED_NUL) + _TERMINATOR


def _unescape(data: bytes, offset: int) -> tuple[bytes, int]:
    out = bytearray()
    pos = offset
    while True:
        nul = data.find(_ESCAPE, pos)
        if nul == -1 or nul + 1 >= len(data):
            raise MalformedKey(f"Unterminated variable-length key at offset {offset}")
        out += data[pos:nul]
        marker = data[nul + 1]
        if marker == 0x01:
            return bytes(out), nul + 2
        if marker != 0xFF:
            raise MalformedKey(f"Invalid escape byte 0x{marker:02x} at offset {nul + 1}")
        out += _ESCAPE
        pos = nul + 2


@dataclass(frozen=True)
class BytesKey(_Codec):
    """Raw byte-string key, escaped and terminated so ordering is preserved."""

    def encode(self, key: Any) -> bytes:
        if not isinstance(key, (bytes, bytearray, memoryview)):
            raise MalformedKey(f"{self!r} expects a bytes key, got {type(key).__name__}")
        return _escape(bytes(key))

    def read(self, data: bytes, offset: int = 0) -> tuple[bytes, int]:
        return _unescape(data, offset)

    def __repr__(self) -> str:
        return "raw"


@dataclass(frozen=True)
class TextKey(_Codec):
    """UTF-8 text key, escaped and terminated like BytesKey."""

    def encode(self, key: Any) -> bytes:
        if not isinstance(key, str):
            raise MalformedKey(f"{self!r} expects a str key, got {type(key).__name__}")
        try:
            return _escape(key.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise MalformedKey(f"Text key is not encodable as UTF-8: {e}") from e

    def read(self, data: bytes, offset: int = 0) -> tuple[str, int]:
        raw_value, end = _unescape(data, offset)
        try:
            return raw_value.decode("utf-8"), end
        except UnicodeDecodeError as e:
            raise MalformedKey(f"Text key is not valid UTF-8: {e}") from e

    def __repr__(self) -> str:
        return "text"


u32 = IntKey(4)
u64 = IntKey(8)
i32 = IntKey(4, signed=True)
i64 = IntKey(8, signed=True)
text = TextKey()
raw = BytesKey()


@dataclass(frozen=True)
class CompositeKey(_Codec):
    """(parent key, u32 sequence) key of a child entity."""

    parent: KeyCodec

    def encode(self, key: Any) -> bytes:
        if not isinstance(key, (tuple, list)) or len(key) != 2:
            raise MalformedKey(f"{self!r} expects a (parent_key, sequence) pair, got {key!r}")
        return self.parent.encode(key[0]) + u32.encode(key[1])

    def read(self, data: bytes, offset: int = 0) -> tuple[tuple[Any, int], int]:
        parent_key, pos = self.parent.read(data, offset)
        sequence, end = u32.read(data, pos)
        return (parent_key, sequence), end

    def prefix(self, parent_key: Any) -> bytes:
        """Encoded prefix shared by every child of ``parent_key``."""
        return self.parent.encode(parent_key)

    def sequence_of(self, data: bytes) -> int:
        """Sequence number of an encoded child key."""
        return self.decode(data)[1]

    def __repr__(self) -> str:
        return f"child_of({self.parent!r})"


def child_of(parent: KeyCodec) -> CompositeKey:
    """Key codec for entities that are children of entities keyed by ``parent``."""
    return CompositeKey(parent)


def prefix_upper_bound(prefix: bytes) -> bytes | None:
    """Smallest byte string greater than every string starting with ``prefix``.

    Returns None when no such bound exists (empty or all-0xff prefix).
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


def infer_key_codec(annotation: Any) -> KeyCodec | None:
    """Pick a codec for a primary key annotation, or None if it is ambiguous."""
    if annotation is int:
        return u32
    if annotation is str:
        return text
    if annotation is bytes:
        return raw
    if get_origin(annotation) is tuple:
        args = get_args(annotation)
        if len(args) == 2 and args[1] is int:
            parent = infer_key_codec(args[0])
            if parent is not None:
                return child_of(parent)
    return None


__all__ = [
    "KeyCodec",
    "IntKey",
    "TextKey",
    "BytesKey",
    "CompositeKey",
    "u32",
    "u64",
    "i32",
    "i64",
    "text",
    "raw",
    "child_of",
    "prefix_upper_bound",
    "infer_key_codec",
]
