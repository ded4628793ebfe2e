"""
MIX archive reader.

MIX files are the packed-archive format of Westwood's Red Alert era games.
They index their contents by a 32-bit hash of the upper-cased filename
(see crc.py); filenames themselves are not stored.

Plain header:
- u16 file count
- u32 data section size
- file count * 12-byte entries {u32 key, u32 offset, u32 size}
- data section

Extended header (first u16 is zero):
- u16 0x0000
- u16 flags: bit 0 = SHA-1 digest follows the data, bit 1 = encrypted
- if encrypted: 80-byte RSA key block, then the plain header and entry
  table Blowfish-encrypted and zero-padded to a multiple of 8 bytes
- otherwise: the plain header and entry table

All integers are little-endian. Entry offsets are relative to the start of
the data section, which is never encrypted. Entries are sorted by key,
compared as signed 32-bit values.

Threading: the directory is read-only once open() returns, and reads of
entries may run concurrently: cached and in-memory archives slice
immutable bytes, and path sources read with os.pread, which does not move
the shared file position. Two cases are not safe to overlap with other
reads of the same archive: file-object sources, and platforms without
os.pread, both of which fall back to seek + read on one handle. cache_all(),
free_cache() and close() replace shared state; the caller must not run
those concurrently with any read of the same archive.
"""

import bisect
import io
import logging
import os
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

from .blowfish import BLOCK_SIZE, BlowfishEngine
from .crc import filename_key, to_signed
from .errors import (
    BadMagicError, CacheError, CorruptDirectoryError, KeyRecoveryError, TooSmallError,
)
from .pk import WESTWOOD_PUBLIC_KEY, PublicKey, decrypt_key_block

__all__ = ['MixArchive', 'MixEntry', 'MixHeader', 'open_archive']

logger = logging.getLogger(__name__)

HEADER_SIZE = 6
ENTRY_SIZE = 12
FLAGS_SIZE = 4
DIGEST_SIZE = 20

FLAG_DIGEST = 0x0001
FLAG_ENCRYPTED = 0x0002
KNOWN_FLAGS = FLAG_DIGEST | FLAG_ENCRYPTED

_HAVE_PREAD = hasattr(os, 'pread')

Source = Union[str, os.PathLike, bytes, bytearray, memoryview, BinaryIO]


@dataclass(frozen=True)
class MixEntry:
    """Directory entry: hashed name, offset into the data section, size."""
    key: int
    offset: int
    size: int

    @property
    def signed_key(self) -> int:
        """Key as the signed value the directory is sorted by."""
        return to_signed(self.key)

    def __repr__(self) -> str:
        return f"MixEntry(key={self.key:#010x}, offset={self.offset}, size={self.size})"


@dataclass(frozen=True)
class MixHeader:
    """Parsed archive header."""
    file_count: int
    data_size: int
    is_extended: bool = False
    has_digest: bool = False
    is_encrypted: bool = False


def _padded(size: int) -> int:
    return (size + BLOCK_SIZE - 1) // BLOCK_SIZE * BLOCK_SIZE


class MixArchive:
    """
    Reader for a single MIX archive.

    Usage:
        with MixArchive('/path/to/REDALERT.MIX') as mix:
            palette = mix.load('TEMPERAT.PAL')
            size = mix.size_of('MOUSE.SHP')

    The source may be a path, a bytes-like object holding a whole archive
    (for example one loaded out of another archive), or a seekable binary
    file object. The archive takes ownership of file objects and closes them.
    """

    def __init__(self, source: Source, name: Optional[str] = None,
                 public_key: PublicKey = WESTWOOD_PUBLIC_KEY):
        """
        Initialize the archive reader; nothing is read until open().

        Args:
            source: Path, archive bytes, or binary file object
            name: Base name used by MixSet bookkeeping (derived from the path
                when omitted)
            public_key: Key used to unwrap the session key of encrypted archives
        """
        self._source = source
        self.path: Optional[Path] = None
        if isinstance(source, (str, os.PathLike)):
            self.path = Path(source)
        if name is None:
            name = self.path.name if self.path is not None else '<memory>'
        self.name = name.upper()
        self.public_key = public_key

        self._file: Optional[BinaryIO] = None
        self._image: Optional[bytes] = None
        self._header: Optional[MixHeader] = None
        self._entries: List[MixEntry] = []
        self._sort_keys: List[int] = []
        self._data_start = 0
        self._cache: Optional[bytes] = None

    def open(self) -> 'MixArchive':
        """
        Open the source and parse the header and directory.

        Raises:
            TooSmallError, BadMagicError, KeyRecoveryError,
            CorruptDirectoryError: If the header is invalid
            OSError: If a path source cannot be opened
        """
        if self._file is not None:
            return self

        source = self._source
        if self.path is not None:
            self._file = open(self.path, 'rb')
        elif isinstance(source, (bytes, bytearray, memoryview)):
            self._image = bytes(source)
            self._file = io.BytesIO(self._image)
        else:
            self._file = source

        try:
            self._parse_header()
        except Exception:
            self.close()
            raise
        return self

    def close(self):
        """Close the backing file and release the cache."""
        self._cache = None
        self._image = None
        if self._file:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()

    def __repr__(self) -> str:
        return f"MixArchive({self.name!r}, entries={len(self._entries)}, cached={self.is_cached})"

    # -------------------------------------------------------------------------
    # Header parsing
    # -------------------------------------------------------------------------

    def _read_exact(self, size: int, error, what: str) -> bytes:
        data = self._file.read(size)
        if len(data) < size:
            raise error(f"{self.name}: {what} truncated ({len(data)} of {size} bytes)")
        return data

    def _parse_header(self):
        start = self._read_exact(HEADER_SIZE, TooSmallError, "header")
        first, flags = struct.unpack_from('<HH', start)

        if first != 0:
            file_count, data_size = struct.unpack('<HI', start)
            table = self._read_exact(file_count * ENTRY_SIZE, CorruptDirectoryError, "entry table")
            header = MixHeader(file_count, data_size)
            data_start = HEADER_SIZE + len(table)

        elif flags & ~KNOWN_FLAGS:
            raise BadMagicError(f"{self.name}: unknown header flags {flags:#06x}")

        elif flags & FLAG_ENCRYPTED:
            header, table, data_start = self._parse_encrypted(start, flags)

        else:
            rest = self._read_exact(FLAGS_SIZE, TooSmallError, "extended header")
            file_count, data_size = struct.unpack('<HI', start[FLAGS_SIZE:] + rest)
            table = self._read_exact(file_count * ENTRY_SIZE, CorruptDirectoryError, "entry table")
            header = MixHeader(file_count, data_size, is_extended=True,
                               has_digest=bool(flags & FLAG_DIGEST))
            data_start = FLAGS_SIZE + HEADER_SIZE + len(table)

        self._header = header
        self._data_start = data_start
        self._load_directory(table)
        self._check_data_section()

        logger.debug("Opened %s: %d entries, data at %d, %d bytes%s",
                     self.name, header.file_count, data_start, header.data_size,
                     " (encrypted)" if header.is_encrypted else "")

    def _parse_encrypted(self, start: bytes, flags: int):
        key_block_size = self.public_key.key_block_size
        rest = self._read_exact(key_block_size - 2 + BLOCK_SIZE, TooSmallError, "encrypted header")
        key_block = start[FLAGS_SIZE:] + rest[:key_block_size - 2]
        first_block = rest[key_block_size - 2:]

        session_key = decrypt_key_block(key_block, self.public_key)
        try:
            engine = BlowfishEngine(session_key)
        except ValueError as exc:
            raise KeyRecoveryError(f"{self.name}: {exc}") from exc

        first_block = engine.decrypt(first_block)
        file_count, data_size = struct.unpack_from('<HI', first_block)

        encrypted_size = _padded(HEADER_SIZE + file_count * ENTRY_SIZE)
        remaining = self._read_exact(encrypted_size - BLOCK_SIZE, CorruptDirectoryError,
                                     "encrypted entry table")
        plain = first_block + engine.decrypt(remaining)
        table = plain[HEADER_SIZE:HEADER_SIZE + file_count * ENTRY_SIZE]

        header = MixHeader(file_count, data_size, is_extended=True,
                           has_digest=bool(flags & FLAG_DIGEST), is_encrypted=True)
        data_start = FLAGS_SIZE + key_block_size + encrypted_size
        return header, table, data_start

    def _load_directory(self, table: bytes):
        data_size = self._header.data_size
        entries = []
        for index, (key, offset, size) in enumerate(struct.iter_unpack('<III', table)):
            if offset + size > data_size:
                raise CorruptDirectoryError(
                    f"{self.name}: entry {index} ({offset}+{size}) exceeds data size {data_size}")
            entries.append(MixEntry(key, offset, size))

        sort_keys = [entry.signed_key for entry in entries]
        if any(a > b for a, b in zip(sort_keys, sort_keys[1:])):
            logger.warning("%s: directory is not sorted, sorting in memory", self.name)
            entries.sort(key=lambda entry: entry.signed_key)
            sort_keys = [entry.signed_key for entry in entries]
        if len(set(sort_keys)) != len(sort_keys):
            logger.warning("%s: directory contains duplicate keys", self.name)

        self._entries = entries
        self._sort_keys = sort_keys

    def _check_data_section(self):
        try:
            self._file.seek(0, io.SEEK_END)
            available = self._file.tell() - self._data_start
        except (OSError, io.UnsupportedOperation):
            return
        if available < self._header.data_size:
            logger.warning("%s: data section is %d bytes, header declares %d",
                           self.name, available, self._header.data_size)

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    @property
    def header(self) -> Optional[MixHeader]:
        return self._header

    @property
    def data_start(self) -> int:
        """File offset of the data section."""
        return self._data_start

    @property
    def data_size(self) -> int:
        return self._header.data_size if self._header else 0

    @property
    def file_count(self) -> int:
        return len(self._entries)

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def is_cached(self) -> bool:
        return self._cache is not None

    def entries(self) -> Iterator[MixEntry]:
        """Iterate over directory entries in key order."""
        return iter(self._entries)

    def keys(self) -> List[int]:
        return [entry.key for entry in self._entries]

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find_by_key(self, key: int) -> Optional[MixEntry]:
        """Binary-search the directory; the first entry with *key* wins."""
        signed = to_signed(key)
        index = bisect.bisect_left(self._sort_keys, signed)
        if index < len(self._sort_keys) and self._sort_keys[index] == signed:
            return self._entries[index]
        return None

    def get_entry(self, name: str) -> Optional[MixEntry]:
        """Get directory metadata for *name* (case-insensitive)."""
        return self.find_by_key(filename_key(name))

    def contains(self, name: str) -> bool:
        return self.get_entry(name) is not None

    __contains__ = contains

    def size_of(self, name: str) -> Optional[int]:
        """Size of *name* in bytes, or None if absent."""
        entry = self.get_entry(name)
        return entry.size if entry else None

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read_entry(self, entry: MixEntry, offset: int = 0, length: Optional[int] = None) -> bytes:
        """
        Read part of an entry from the cache or the backing file.

        An offset outside the entry or a zero length yields b''. The result is
        shorter than requested if the archive is truncated. Concurrent calls
        are safe except for file-object sources (see the module notes).
        """
        if offset < 0 or offset >= entry.size:
            return b''
        available = entry.size - offset
        length = available if length is None else min(length, available)
        if length <= 0:
            return b''

        start = entry.offset + offset
        if self._cache is not None:
            return self._cache[start:start + length]
        if self._file is None:
            return b''
        return self._read_at(self._data_start + start, length)

    def _read_at(self, position: int, length: int) -> bytes:
        if self._image is not None:
            return self._image[position:position + length]
        if _HAVE_PREAD and self.path is not None:
            return os.pread(self._file.fileno(), length, position)
        self._file.seek(position)
        return self._file.read(length)

    def read_entry_into(self, entry: MixEntry, buffer) -> int:
        """Copy the start of an entry into *buffer*; returns bytes copied."""
        data = self.read_entry(entry, 0, len(buffer))
        buffer[:len(data)] = data
        return len(data)

    def entry_view(self, entry: MixEntry) -> Optional[memoryview]:
        """Read-only view of a cached entry, or None if not cached."""
        if self._cache is None:
            return None
        return memoryview(self._cache)[entry.offset:entry.offset + entry.size]

    def load(self, name: str) -> Optional[bytes]:
        """
        Read a whole file from the archive.

        Args:
            name: File name (case-insensitive)

        Returns:
            File contents as bytes, or None if not found
        """
        entry = self.get_entry(name)
        if entry is None:
            return None
        return self.read_entry(entry)

    read_file = load

    def load_into(self, name: str, buffer) -> int:
        """
        Copy a file into a writable buffer.

        Returns:
            Bytes copied: min(len(buffer), file size), or 0 if not found
        """
        entry = self.get_entry(name)
        if entry is None:
            return 0
        return self.read_entry_into(entry, buffer)

    def read_partial(self, name: str, offset: int, length: int) -> bytes:
        """Read *length* bytes of *name* starting at *offset*; b'' if out of range."""
        entry = self.get_entry(name)
        if entry is None:
            return b''
        return self.read_entry(entry, offset, length)

    def cached_view(self, name: str) -> Optional[memoryview]:
        """
        Zero-copy view of a file in the cache.

        Returns None unless the archive is cached. The view keeps the cache
        buffer it came from alive: after free_cache() or close() it still
        reads the old bytes but is no longer connected to the archive. Copy
        the data out with bytes(view) if it must outlive the lookup.
        """
        entry = self.get_entry(name)
        if entry is None:
            return None
        return self.entry_view(entry)

    # -------------------------------------------------------------------------
    # Caching
    # -------------------------------------------------------------------------

    def cache_all(self):
        """
        Read the whole data section into memory; later reads use it.

        Does nothing if already cached.

        Raises:
            CacheError: If the archive is closed or the data section is short
        """
        if self._cache is not None:
            return
        if self._file is None:
            raise CacheError(f"{self.name}: archive is not open")

        size = self.data_size
        try:
            data = self._read_at(self._data_start, size)
        except OSError as exc:
            raise CacheError(f"{self.name}: {exc}") from exc
        if len(data) < size:
            raise CacheError(f"{self.name}: data section truncated ({len(data)} of {size} bytes)")

        self._cache = data
        logger.debug("Cached %s (%d bytes)", self.name, size)

    def free_cache(self):
        """Release the cache; safe to call when not cached."""
        if self._cache is not None:
            self._cache = None
            logger.debug("Freed cache of %s", self.name)


def open_archive(source: Source, name: Optional[str] = None,
                 public_key: PublicKey = WESTWOOD_PUBLIC_KEY) -> MixArchive:
    """Create and open a MixArchive in one step."""
    return MixArchive(source, name=name, public_key=public_key).open()
