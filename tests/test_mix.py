import io
import logging
import struct
from concurrent.futures import ThreadPoolExecutor

import pytest

from mix_data import (
    BadMagicError, CacheError, CorruptDirectoryError, KeyRecoveryError, MixArchive,
    MixEntry, TooSmallError, filename_key, list_keys, open_archive, read_mix_file, to_signed,
)
from mixbuilder import TEST_PUBLIC_KEY, build_mix, pack_header, wrap_session_key

FILES = {'A.TXT': b'AAAA', 'B.TXT': b'BBBB'}


def test_plain_archive(write_mix):
    path = write_mix('test.mix', FILES)
    with MixArchive(path) as mix:
        assert mix.name == 'TEST.MIX'
        assert mix.header.file_count == 2
        assert mix.header.data_size == 8
        assert not mix.header.is_extended
        assert mix.data_start == 6 + 2 * 12
        assert mix.load('A.TXT') == b'AAAA'
        assert mix.load('b.txt') == b'BBBB'
        assert mix.load('C.TXT') is None
        assert mix.size_of('A.TXT') == 4
        assert mix.size_of('C.TXT') is None
        assert 'A.TXT' in mix
        assert not mix.contains('C.TXT')


def test_entries_are_sorted_by_signed_key():
    files = {f'FILE{i}.DAT': bytes([i]) * i for i in range(40)}
    with MixArchive(build_mix(files)) as mix:
        signed = [entry.signed_key for entry in mix.entries()]
        assert signed == sorted(signed)
        assert mix.file_count == 40
        for name, content in files.items():
            assert mix.load(name) == content


def test_entry_metadata():
    with open_archive(build_mix(FILES)) as mix:
        entry = mix.get_entry('B.TXT')
        assert entry == MixEntry(filename_key('B.TXT'), 4, 4)
        assert mix.find_by_key(filename_key('A.TXT')).offset == 0
        assert mix.find_by_key(0x12345678) is None
        assert sorted(mix.keys()) == sorted(filename_key(n) for n in FILES)


def test_extended_header_with_digest():
    image = build_mix(FILES, digest=True)
    with MixArchive(image) as mix:
        assert mix.header.is_extended
        assert mix.header.has_digest
        assert not mix.header.is_encrypted
        assert mix.data_start == 4 + 6 + 2 * 12
        assert mix.load('B.TXT') == b'BBBB'


def test_encrypted_archive():
    image = build_mix({'A.TXT': b'0123456789ABCDEF'}, encrypted=True)
    with MixArchive(image, public_key=TEST_PUBLIC_KEY) as mix:
        assert mix.header.is_encrypted
        assert mix.file_count == 1
        assert mix.data_size == 16
        # 4-byte flags, 80-byte key block, 18 header bytes padded to 24
        assert mix.data_start == 108
        assert mix.load('A.TXT') == b'0123456789ABCDEF'


def test_encrypted_archive_many_entries():
    files = {f'UNIT{i:02}.SHP': bytes([i]) * (i + 1) for i in range(25)}
    with MixArchive(build_mix(files, encrypted=True, digest=True),
                    public_key=TEST_PUBLIC_KEY) as mix:
        assert mix.header.has_digest
        assert mix.data_start == 4 + 80 + 312
        for name, content in files.items():
            assert mix.load(name) == content


def test_encrypted_archive_with_foreign_key():
    image = struct.pack('<HH', 0, 2) + b'\xff' * 80 + bytes(8)
    with pytest.raises(KeyRecoveryError):
        MixArchive(image).open()


@pytest.mark.parametrize('image', [
    b'',
    b'\x01\x00\x00\x00\x00',
    struct.pack('<HH', 0, 2) + bytes(40),
], ids=['empty', 'short-header', 'short-key-block'])
def test_too_small(image):
    with pytest.raises(TooSmallError):
        MixArchive(image).open()


def test_unknown_flags():
    with pytest.raises(BadMagicError):
        MixArchive(struct.pack('<HHI', 0, 4, 0)).open()


def test_missing_entries():
    header = struct.pack('<HI', 3, 8) + struct.pack('<III', 1, 0, 4)
    with pytest.raises(CorruptDirectoryError):
        MixArchive(header + bytes(8)).open()


def test_entry_beyond_data_section():
    image = pack_header([(1, 0, 4), (2, 4, 8)], 8) + bytes(8)
    with pytest.raises(CorruptDirectoryError):
        MixArchive(image).open()


def test_failed_open_closes_file(tmp_path):
    path = tmp_path / 'bad.mix'
    path.write_bytes(b'\x01')
    mix = MixArchive(path)
    with pytest.raises(TooSmallError):
        mix.open()
    assert not mix.is_open


def test_unsorted_directory_is_sorted_on_load(caplog):
    low, high = filename_key('A.TXT'), filename_key('B.TXT')
    entries = sorted([(low, 0, 4), (high, 4, 4)], key=lambda e: to_signed(e[0]), reverse=True)
    image = pack_header(entries, 8) + b'AAAABBBB'
    with caplog.at_level(logging.WARNING, logger='mix_data.mix'):
        with MixArchive(image) as mix:
            assert mix.load('A.TXT') == b'AAAA'
            assert mix.load('B.TXT') == b'BBBB'
    assert 'not sorted' in caplog.text


def test_duplicate_keys_first_entry_wins(caplog):
    key = filename_key('A.TXT')
    image = pack_header([(key, 0, 4), (key, 4, 4)], 8) + b'AAAABBBB'
    with caplog.at_level(logging.WARNING, logger='mix_data.mix'):
        with MixArchive(image) as mix:
            assert mix.load('A.TXT') == b'AAAA'
    assert 'duplicate' in caplog.text


def test_file_object_source():
    with MixArchive(io.BytesIO(build_mix(FILES)), name='stream.mix') as mix:
        assert mix.name == 'STREAM.MIX'
        assert mix.load('A.TXT') == b'AAAA'


def test_cached_reads_match_uncached():
    files = {f'F{i}.BIN': bytes(range(i, i + 50)) for i in range(10)}
    with MixArchive(build_mix(files)) as mix:
        uncached = {name: mix.load(name) for name in files}
        mix.cache_all()
        assert mix.is_cached
        assert {name: mix.load(name) for name in files} == uncached
        mix.free_cache()
        assert not mix.is_cached
        assert {name: mix.load(name) for name in files} == uncached


def test_cache_all_is_idempotent():
    with MixArchive(build_mix(FILES)) as mix:
        mix.cache_all()
        first = mix.cached_view('A.TXT').obj
        mix.cache_all()
        assert mix.cached_view('B.TXT').obj is first


def test_free_cache_when_not_cached():
    with MixArchive(build_mix(FILES)) as mix:
        mix.free_cache()
        assert mix.load('A.TXT') == b'AAAA'


def test_cached_view():
    with MixArchive(build_mix(FILES)) as mix:
        assert mix.cached_view('A.TXT') is None
        mix.cache_all()
        view = mix.cached_view('B.TXT')
        assert view.readonly
        assert bytes(view) == b'BBBB'
        assert mix.cached_view('C.TXT') is None
        mix.free_cache()
        assert bytes(view) == b'BBBB'


def test_load_into():
    with MixArchive(build_mix(FILES)) as mix:
        small = bytearray(2)
        assert mix.load_into('A.TXT', small) == 2
        assert small == b'AA'
        large = bytearray(10)
        assert mix.load_into('B.TXT', large) == 4
        assert large[:4] == b'BBBB'
        assert mix.load_into('C.TXT', large) == 0


@pytest.mark.parametrize('cached', [False, True])
def test_read_partial(cached):
    with MixArchive(build_mix({'DATA.BIN': b'0123456789'})) as mix:
        if cached:
            mix.cache_all()
        assert mix.read_partial('DATA.BIN', 2, 3) == b'234'
        assert mix.read_partial('DATA.BIN', 8, 10) == b'89'
        assert mix.read_partial('DATA.BIN', 10, 1) == b''
        assert mix.read_partial('DATA.BIN', 0, 0) == b''
        assert mix.read_partial('MISSING.BIN', 0, 4) == b''


def test_empty_entry():
    with MixArchive(build_mix({'EMPTY.DAT': b'', 'A.TXT': b'A'})) as mix:
        assert mix.size_of('EMPTY.DAT') == 0
        assert mix.load('EMPTY.DAT') == b''


def test_truncated_data_section(caplog):
    image = build_mix(FILES)[:-3]
    with caplog.at_level(logging.WARNING, logger='mix_data.mix'):
        mix = open_archive(image)
    assert 'data section' in caplog.text
    with mix:
        assert mix.load('A.TXT') == b'AAAA'
        assert mix.load('B.TXT') == b'B'
        with pytest.raises(CacheError):
            mix.cache_all()
        assert not mix.is_cached


def test_cache_all_on_closed_archive():
    mix = MixArchive(build_mix(FILES))
    with pytest.raises(CacheError):
        mix.cache_all()


def test_close_releases_cache():
    mix = open_archive(build_mix(FILES))
    mix.cache_all()
    mix.close()
    assert not mix.is_open
    assert not mix.is_cached


def test_missing_path():
    with pytest.raises(FileNotFoundError):
        open_archive('/nonexistent/REDALERT.MIX')


def test_convenience_functions(write_mix):
    path = write_mix('conv.mix', FILES)
    assert read_mix_file(str(path), 'B.TXT') == b'BBBB'
    with pytest.raises(FileNotFoundError):
        read_mix_file(str(path), 'C.TXT')
    assert sorted(list_keys(str(path))) == sorted(filename_key(n) for n in FILES)


def test_wrap_session_key_size():
    assert len(wrap_session_key(bytes(56))) == 80


def test_concurrent_uncached_reads(write_mix):
    files = {f'F{i:02}.BIN': bytes([i]) * (100 + i) for i in range(32)}
    path = write_mix('threads.mix', files)
    names = list(files) * 8
    with MixArchive(path) as mix:
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(mix.load, names))
    assert results == [files[name] for name in names]


def test_in_memory_reads_do_not_use_file_position():
    with MixArchive(build_mix(FILES)) as mix:
        mix._file.seek(0)
        assert mix.load('B.TXT') == b'BBBB'
        assert mix._file.tell() == 0
