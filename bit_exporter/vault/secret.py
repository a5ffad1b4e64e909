"""
Scoped secret buffers.

Key material is held in a mutable ``bytearray`` so it can be overwritten with
zeros once it is no longer needed. ``SecretKey`` is a context manager: leaving
the ``with`` block wipes the buffer on every exit path.

Security Note:
    Wiping is best-effort. Libraries may keep immutable copies of a key while
    an operation runs; those are outside our control.
"""
import hmac
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


class SecretKey:
    """Fixed-size secret byte buffer that is zeroed on release."""

    __slots__ = ("_buf", "_wiped")

    def __init__(self, data: BytesLike):
        self._buf = bytearray(data)
        self._wiped = False

    @property
    def raw(self) -> bytearray:
        """The underlying buffer, for passing to cryptographic primitives.

        Raises:
            ValueError: If the key has already been wiped.
        """
        if self._wiped:
            raise ValueError("secret key has been wiped")
        return self._buf

    @property
    def wiped(self) -> bool:
        return self._wiped

    def split(self, at: int) -> tuple["SecretKey", "SecretKey"]:
        """Split into two new keys at ``at`` bytes. This key is left intact."""
        raw = self.raw
        if not 0 < at < len(raw):
            raise ValueError(f"cannot split a {len(raw)}-byte key at {at}")
        view = memoryview(raw)
        try:
            return SecretKey(view[:at]), SecretKey(view[at:])
        finally:
            view.release()

    def wipe(self) -> None:
        """Overwrite the buffer with zeros. Safe to call more than once."""
        self._buf[:] = bytes(len(self._buf))
        self._wiped = True

    def __len__(self) -> int:
        return len(self._buf)

    def __enter__(self) -> "SecretKey":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretKey):
            return NotImplemented
        return hmac.compare_digest(bytes(self.raw), bytes(other.raw))

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"<SecretKey {len(self._buf)} bytes{' wiped' if self._wiped else ''}>"
