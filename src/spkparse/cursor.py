"""Fixed-width field extraction over an immutable byte buffer.

All multi-byte DAF fields in the supported numeric format (``LTL-IEEE``)
are little-endian, so every reader here uses ``<`` struct formats.
"""

from __future__ import annotations

import struct
from typing import Union

from .errors import Truncated

Buffer = Union[bytes, bytearray, memoryview]

_U32 = struct.Struct("<I")
_I32 = struct.Struct("<i")
_F64 = struct.Struct("<d")

# Characters stripped from fixed-width text fields
_PAD = " \t\r\n\x00"


class ByteCursor:
    """A read position over a buffer that advances as fields are consumed.

    The cursor never mutates the underlying buffer; only its own offset
    moves. Reading past the end raises :class:`~spkparse.errors.Truncated`
    and leaves the offset where it was.

    Args:
        buffer: The source bytes.
        offset: Starting byte offset.
    """

    __slots__ = ("buffer", "offset")

    def __init__(self, buffer: Buffer, offset: int = 0) -> None:
        self.buffer = buffer
        self.offset = offset

    @property
    def remaining(self) -> int:
        """Bytes left between the offset and the end of the buffer."""
        return max(0, len(self.buffer) - self.offset)

    def _require(self, n: int) -> int:
        if n < 0 or self.offset < 0 or self.remaining < n:
            raise Truncated(self.offset, n, self.remaining)
        start = self.offset
        self.offset += n
        return start

    def seek(self, offset: int) -> ByteCursor:
        """Move to an absolute offset and return ``self`` for chaining."""
        self.offset = offset
        return self

    def skip(self, n: int) -> None:
        """Advance ``n`` bytes without decoding them."""
        self._require(n)

    def raw(self, n: int) -> bytes:
        """Return the next ``n`` bytes undecoded."""
        start = self._require(n)
        return bytes(self.buffer[start:start + n])

    def text(self, n: int) -> str:
        """Decode an ``n``-byte text field, trimming blanks and NUL padding."""
        return self.raw(n).decode("latin-1").strip(_PAD)

    def u32(self) -> int:
        """Read a little-endian unsigned 32-bit integer."""
        start = self._require(4)
        return _U32.unpack_from(self.buffer, start)[0]

    def i32(self) -> int:
        """Read a little-endian signed 32-bit integer."""
        start = self._require(4)
        return _I32.unpack_from(self.buffer, start)[0]

    def f64(self) -> float:
        """Read a little-endian IEEE-754 double."""
        start = self._require(8)
        return _F64.unpack_from(self.buffer, start)[0]
