import random

import pytest

from mix_data import DecompressionError, compress, decompress, decompress_into


def test_literal():
    assert decompress(b'\x02abc\x80', 3) == b'abc'


def test_short_copy_overlapping():
    stream = b'\x01ab' + bytes((0x83, 0x02)) + b'\x80'
    assert decompress(stream, 6) == b'ababab'


def test_long_copy_offset_is_relative():
    stream = b'\x03abcd' + bytes((0xC1, 0x04, 0x00)) + b'\x80'
    assert decompress(stream, 6) == b'abcdab'


def test_short_fill():
    assert decompress(bytes((0xFD, 0x7A, 0xFC, 0x41)), 3) == b'zzA'


def test_long_fill():
    assert decompress(bytes((0xFE, 0x09, 0x42)), 10) == b'B' * 10
    assert decompress(bytes((0xFF, 0x00, 0x41)), 257) == b'A' * 257
    assert decompress(bytes((0xFF, 0xFF, 0x00)), 600) == bytes(512)


def test_end_of_stream_stops_decoding():
    assert decompress(b'\x00x\x80\x00y', 2) == b'x'


def test_output_is_clamped_to_capacity():
    dest = bytearray(4)
    assert decompress_into(bytes((0xFE, 0x63, 0x41)), dest) == 4
    assert dest == b'AAAA'
    assert decompress(b'\x05abcdef\x80', 3) == b'abc'


def test_copy_before_output_start_stops():
    assert decompress(b'\x00a' + bytes((0x81, 0x05)) + b'\x00b\x80', 10) == b'a'
    assert decompress(b'\x00a' + bytes((0x81, 0x00)), 10) == b'a'


@pytest.mark.parametrize('command', [0x40, 0x7F, 0xE0, 0xFB])
def test_invalid_command_stops(command):
    assert decompress(b'\x00a' + bytes((command,)) + b'\x00b', 10) == b'a'


def test_truncated_stream():
    assert decompress(b'\x05ab', 6) == b'ab'
    assert decompress(bytes((0xFE, 0x09)), 10) == b''


def test_strict_mode():
    with pytest.raises(DecompressionError):
        decompress(b'\x00a\x80', 2, strict=True)
    assert decompress(b'\x01ab\x80', 2, strict=True) == b'ab'


def test_negative_size():
    with pytest.raises(ValueError):
        decompress(b'\x80', -1)


def _random_bytes(seed, count):
    rng = random.Random(seed)
    return bytes(rng.randrange(256) for _ in range(count))


@pytest.mark.parametrize('data', [
    b'',
    b'a',
    b'ab',
    b'The MIX archive holds art, sound and rules for every theater.' * 3,
    bytes(2000),
    b'\x01\x02\x03' * 700,
    _random_bytes(1, 3000),
    _random_bytes(2, 300) * 2,
    bytes(range(256)) * 3,
], ids=['empty', 'one', 'two', 'text', 'zeros', 'pattern', 'random',
        'far-repeat', 'ramp'])
def test_compress_round_trip(data):
    encoded = compress(data)
    assert encoded.endswith(b'\x80')
    assert decompress(encoded, len(data), strict=True) == data


def test_compress_shrinks_repetitive_data():
    assert len(compress(bytes(5000))) < 40
    assert len(compress(b'SHAPE' * 400)) < 200
