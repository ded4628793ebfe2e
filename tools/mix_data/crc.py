"""
Westwood filename hash for MIX archive lookups.

MIX archives never store filenames. Each directory entry carries a 32-bit
key computed from the upper-cased filename, and lookups hash the requested
name the same way. Despite the historical "CRC" name, the function is a
rotate-and-add checksum:

- the input is split into little-endian 32-bit words, the final partial
  word zero-padded
- for each word: crc = rotate_left(crc, 1) + word  (mod 2**32)

Keys are compared as signed 32-bit integers when the directory is sorted.
"""

import struct
from typing import Dict, Iterable, Optional

__all__ = ['westwood_crc', 'filename_key', 'to_signed', 'WestwoodCRC', 'KeyNames']

MASK32 = 0xFFFFFFFF


def _rotate_add(crc: int, word: int) -> int:
    return ((((crc << 1) | (crc >> 31)) & MASK32) + word) & MASK32


def westwood_crc(data: bytes) -> int:
    """
    Calculate the Westwood rotate-and-add hash of a byte string.

    Args:
        data: Bytes to hash

    Returns:
        Unsigned 32-bit hash value
    """
    remainder = len(data) % 4
    if remainder:
        data = bytes(data) + b'\x00' * (4 - remainder)

    crc = 0
    for (word,) in struct.iter_unpack('<I', data):
        crc = _rotate_add(crc, word)
    return crc


def filename_key(name: str) -> int:
    """
    Hash a filename into its MIX directory key.

    Only ASCII letters are case-folded, so 'palette.pal' and 'PALETTE.PAL'
    produce the same key.
    """
    return westwood_crc(name.encode('latin-1', errors='replace').upper())


def to_signed(key: int) -> int:
    """Reinterpret an unsigned 32-bit key as a signed integer."""
    key &= MASK32
    return key - 0x100000000 if key & 0x80000000 else key


class WestwoodCRC:
    """
    Incremental form of westwood_crc.

    Feeding the input in any number of pieces gives the same value as
    hashing the concatenation in one call.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        """Discard all accumulated input."""
        self._crc = 0
        self._staging = bytearray()

    def update(self, data: bytes) -> 'WestwoodCRC':
        """Accumulate more bytes."""
        staging = self._staging
        staging.extend(data)
        whole = len(staging) - len(staging) % 4
        if whole:
            for (word,) in struct.iter_unpack('<I', staging[:whole]):
                self._crc = _rotate_add(self._crc, word)
            del staging[:whole]
        return self

    @property
    def value(self) -> int:
        """Hash of everything accumulated so far, including a partial word."""
        if not self._staging:
            return self._crc
        word = int.from_bytes(bytes(self._staging), 'little')
        return _rotate_add(self._crc, word)


class KeyNames:
    """
    Known filenames indexed by key.

    Archives hold only keys, so listings can name an entry only if its
    filename was registered here beforehand.
    """

    def __init__(self, names: Iterable[str] = ()):
        self._names: Dict[int, str] = {}
        self.register_all(names)

    def register(self, name: str) -> int:
        """Remember *name*; returns its key."""
        key = filename_key(name)
        self._names[key] = name.upper()
        return key

    def register_all(self, names: Iterable[str]):
        for name in names:
            self.register(name)

    def lookup(self, key: int) -> Optional[str]:
        return self._names.get(key & MASK32)

    def __len__(self) -> int:
        return len(self._names)
