"""
Blowfish block cipher used to protect encrypted MIX directories.

The archives use standard Blowfish in ECB mode (64-bit blocks, big-endian
halves), so the rounds and key schedule come from pycryptodome. This module
adds the buffer contract the archive reader relies on: whole blocks are
processed in place, a trailing partial block is left untouched, and an
engine without a key processes nothing.

Keys may be 1 to 56 bytes. The key schedule cycles through the key bytes,
so a key shorter than pycryptodome's 4-byte minimum is repeated up to it,
which yields the same schedule.
"""

import struct
from dataclasses import dataclass
from typing import Any, Tuple, Union

from Crypto.Cipher import Blowfish

__all__ = ['BlowfishState', 'BlowfishEngine', 'BLOCK_SIZE', 'MAX_KEY_LENGTH']

BLOCK_SIZE = Blowfish.block_size
MIN_KEY_LENGTH = 1
MAX_KEY_LENGTH = 56

Buffer = Union[bytearray, memoryview]


def _schedule_key(key: bytes) -> bytes:
    short = min(Blowfish.key_size)
    if len(key) < short:
        key = key * -(-short // len(key))
    return key


@dataclass(frozen=True)
class BlowfishState:
    """A session key and the ECB cipher keyed with it."""
    key: bytes
    cipher: Any

    @classmethod
    def derive(cls, key: bytes) -> 'BlowfishState':
        """
        Run the Blowfish key schedule.

        Args:
            key: 1 to 56 key bytes

        Raises:
            ValueError: If the key length is out of range
        """
        key = bytes(key)
        if not MIN_KEY_LENGTH <= len(key) <= MAX_KEY_LENGTH:
            raise ValueError(f"Blowfish key must be 1-{MAX_KEY_LENGTH} bytes, got {len(key)}")
        return cls(key, Blowfish.new(_schedule_key(key), Blowfish.MODE_ECB))


class BlowfishEngine:
    """
    Block-wise Blowfish in ECB mode.

    Usage:
        engine = BlowfishEngine(key)
        plain = engine.decrypt(cipher_text)
    """

    def __init__(self, key: bytes = None):
        self._state = None
        if key is not None:
            self.set_key(key)

    def set_key(self, key: bytes):
        """Derive the round keys for *key* (1-56 bytes)."""
        self._state = BlowfishState.derive(key)

    @property
    def is_keyed(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> BlowfishState:
        return self._state

    def encrypt_block(self, left: int, right: int) -> Tuple[int, int]:
        """Encrypt one block given as two 32-bit halves."""
        block = self._state.cipher.encrypt(struct.pack('>II', left, right))
        return struct.unpack('>II', block)

    def decrypt_block(self, left: int, right: int) -> Tuple[int, int]:
        """Decrypt one block given as two 32-bit halves."""
        block = self._state.cipher.decrypt(struct.pack('>II', left, right))
        return struct.unpack('>II', block)

    def encrypt_blocks(self, buffer: Buffer) -> int:
        """
        Encrypt whole blocks of a writable buffer in place.

        Returns:
            Number of bytes processed (0 if unkeyed or shorter than a block)
        """
        if self._state is None:
            return 0
        return self._process(buffer, self._state.cipher.encrypt)

    def decrypt_blocks(self, buffer: Buffer) -> int:
        """
        Decrypt whole blocks of a writable buffer in place.

        Returns:
            Number of bytes processed (0 if unkeyed or shorter than a block)
        """
        if self._state is None:
            return 0
        return self._process(buffer, self._state.cipher.decrypt)

    def encrypt(self, data: bytes) -> bytes:
        """Return *data* with every whole block encrypted."""
        buffer = bytearray(data)
        self.encrypt_blocks(buffer)
        return bytes(buffer)

    def decrypt(self, data: bytes) -> bytes:
        """Return *data* with every whole block decrypted."""
        buffer = bytearray(data)
        self.decrypt_blocks(buffer)
        return bytes(buffer)

    @staticmethod
    def _process(buffer: Buffer, operation) -> int:
        length = len(buffer) - len(buffer) % BLOCK_SIZE
        if length == 0:
            return 0
        view = memoryview(buffer)[:length]
        operation(view, output=view)
        return length
