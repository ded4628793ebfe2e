"""
Run-length / back-reference codec for compressed MIX assets.

The stream is a sequence of commands, each introduced by one command byte:

    0x80                 end of stream
    00cccccc             literal: copy (c + 1) bytes from the source
    10cccccc oo          short copy: (c + 1) bytes from dest_pos - oo
    110ccccc oo oo       long copy: (c + 1) bytes from dest_pos - offset,
                         offset a little-endian 16-bit value
    1111110c vv          short fill: (c + 1) copies of vv
    1111111c nn vv       long fill: ((c << 8 | nn) + 1) copies of vv,
                         up to 512

Copies may overlap the bytes they produce (offset smaller than count),
which repeats a pattern. Bytes 0x40-0x7F and 0xE0-0xFB are not valid
commands and stop decoding, as does any copy reaching before the start of
the output. Output never grows past the destination's capacity.

Decoding does not raise on bad input. It returns the number of bytes
produced, and callers treat a count short of the expected size as
corruption (decompress(..., strict=True) does this for them).
"""

import logging
from collections import deque
from typing import Deque, Dict, Union

from .errors import DecompressionError

__all__ = ['decompress_into', 'decompress', 'compress', 'END_OF_STREAM']

logger = logging.getLogger(__name__)

END_OF_STREAM = 0x80

LITERAL_MAX = 64
SHORT_COPY_MAX = 64
SHORT_COPY_OFFSET_MAX = 0xFF
LONG_COPY_MAX = 32
LONG_COPY_OFFSET_MAX = 0xFFFF
SHORT_FILL_MAX = 2
LONG_FILL_MAX = 512

MIN_MATCH = 3
_CHAIN_DEPTH = 16

Buffer = Union[bytearray, memoryview]


def _copy_back(dest: Buffer, dest_pos: int, offset: int, count: int) -> int:
    """Copy *count* bytes from dest_pos - offset; returns the new position or -1."""
    if offset == 0 or offset > dest_pos:
        return -1

    start = dest_pos - offset
    if offset >= count:
        dest[dest_pos:dest_pos + count] = dest[start:start + count]
    else:
        for i in range(count):
            dest[dest_pos + i] = dest[start + i]
    return dest_pos + count


def decompress_into(source: bytes, dest: Buffer) -> int:
    """
    Decode a command stream into a preallocated buffer.

    Args:
        source: Compressed bytes
        dest: Writable buffer; its length is the output capacity

    Returns:
        Number of bytes written to dest
    """
    capacity = len(dest)
    src_len = len(source)
    src_pos = 0
    dest_pos = 0

    while src_pos < src_len and dest_pos < capacity:
        command = source[src_pos]
        src_pos += 1

        if command == END_OF_STREAM:
            break

        room = capacity - dest_pos

        if command >= 0xFE:
            # Long fill
            if src_pos + 2 > src_len:
                break
            count = (((command & 0x01) << 8) | source[src_pos]) + 1
            value = source[src_pos + 1]
            src_pos += 2
            count = min(count, room)
            dest[dest_pos:dest_pos + count] = bytes((value,)) * count
            dest_pos += count

        elif command >= 0xFC:
            # Short fill
            if src_pos >= src_len:
                break
            count = min((command & 0x03) + 1, room)
            value = source[src_pos]
            src_pos += 1
            dest[dest_pos:dest_pos + count] = bytes((value,)) * count
            dest_pos += count

        elif command >= 0xE0:
            logger.debug("Invalid command byte %#04x at source offset %d", command, src_pos - 1)
            break

        elif command >= 0xC0:
            # Long copy
            if src_pos + 2 > src_len:
                break
            offset = source[src_pos] | (source[src_pos + 1] << 8)
            src_pos += 2
            new_pos = _copy_back(dest, dest_pos, offset, min((command & 0x1F) + 1, room))
            if new_pos < 0:
                logger.debug("Copy offset %d reaches before output start at %d", offset, dest_pos)
                break
            dest_pos = new_pos

        elif command >= 0x80:
            # Short copy
            if src_pos >= src_len:
                break
            offset = source[src_pos]
            src_pos += 1
            new_pos = _copy_back(dest, dest_pos, offset, min((command & 0x3F) + 1, room))
            if new_pos < 0:
                logger.debug("Copy offset %d reaches before output start at %d", offset, dest_pos)
                break
            dest_pos = new_pos

        elif command >= 0x40:
            logger.debug("Invalid command byte %#04x at source offset %d", command, src_pos - 1)
            break

        else:
            # Literal
            count = (command & 0x3F) + 1
            chunk = source[src_pos:src_pos + min(count, room)]
            dest[dest_pos:dest_pos + len(chunk)] = chunk
            dest_pos += len(chunk)
            src_pos += count
            if src_pos > src_len:
                break

    return dest_pos


def decompress(source: bytes, size: int, strict: bool = False) -> bytes:
    """
    Decode a command stream whose decompressed size is known.

    Args:
        source: Compressed bytes
        size: Expected (maximum) decompressed size
        strict: Raise instead of returning short output

    Returns:
        Decompressed bytes, at most *size* long

    Raises:
        DecompressionError: In strict mode, if fewer than *size* bytes decode
    """
    if size < 0:
        raise ValueError(f"Negative output size: {size}")

    dest = bytearray(size)
    written = decompress_into(source, dest)
    if strict and written != size:
        raise DecompressionError(f"Stream produced {written} of {size} bytes")
    del dest[written:]
    return bytes(dest)


# =============================================================================
# Reference compressor
# =============================================================================

def _run_length(data: bytes, pos: int, limit: int) -> int:
    value = data[pos]
    end = min(len(data), pos + limit)
    run = 1
    while pos + run < end and data[pos + run] == value:
        run += 1
    return run


def _find_match(data: bytes, pos: int, chains: Dict[bytes, Deque[int]]):
    """Longest earlier match for data[pos:]; returns (length, offset)."""
    candidates = chains.get(data[pos:pos + MIN_MATCH])
    if not candidates:
        return 0, 0

    best_len = 0
    best_offset = 0
    remaining = len(data) - pos
    for candidate in reversed(candidates):
        offset = pos - candidate
        if offset > LONG_COPY_OFFSET_MAX:
            break
        limit = SHORT_COPY_MAX if offset <= SHORT_COPY_OFFSET_MAX else LONG_COPY_MAX
        limit = min(limit, remaining)
        length = 0
        while length < limit and data[candidate + length] == data[pos + length]:
            length += 1
        if length > best_len:
            best_len = length
            best_offset = offset
            if length == limit:
                break
    return best_len, best_offset


def compress(data: bytes) -> bytes:
    """
    Encode *data* as a command stream ending with END_OF_STREAM.

    Greedy: at each position the longer of a byte run (fill) or an earlier
    match (copy) is emitted if it covers at least three bytes, otherwise
    the byte joins a pending literal.
    """
    data = bytes(data)
    out = bytearray()
    literals = bytearray()
    chains: Dict[bytes, Deque[int]] = {}

    def flush_literals():
        for start in range(0, len(literals), LITERAL_MAX):
            chunk = literals[start:start + LITERAL_MAX]
            out.append(len(chunk) - 1)
            out.extend(chunk)
        literals.clear()

    def index(start: int, stop: int):
        for p in range(start, min(stop, len(data) - MIN_MATCH + 1)):
            chains.setdefault(data[p:p + MIN_MATCH], deque(maxlen=_CHAIN_DEPTH)).append(p)

    pos = 0
    while pos < len(data):
        run = _run_length(data, pos, LONG_FILL_MAX)
        length, offset = _find_match(data, pos, chains)

        if run >= MIN_MATCH and run >= length:
            flush_literals()
            count = run - 1
            out.extend((0xFE | (count >> 8), count & 0xFF, data[pos]))
            advance = run
        elif length >= MIN_MATCH:
            flush_literals()
            if offset <= SHORT_COPY_OFFSET_MAX:
                out.extend((0x80 | (length - 1), offset))
            else:
                out.extend((0xC0 | (length - 1), offset & 0xFF, offset >> 8))
            advance = length
        else:
            literals.append(data[pos])
            advance = 1

        index(pos, pos + advance)
        pos += advance

    flush_literals()
    out.append(END_OF_STREAM)
    return bytes(out)
