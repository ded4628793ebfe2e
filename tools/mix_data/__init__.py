"""
Westwood MIX Archive Library

A Python library for reading MIX archives, the packed asset containers of
Red Alert era Westwood games, including:
- Plain, extended and encrypted (RSA + Blowfish) archive headers
- Filename-hash lookups (the archives store no filenames)
- Overlaying many archives with later mounts taking priority
- The run-length/back-reference codec used by compressed assets

Simple Usage:
    from mix_data import MixArchive

    # Read files from a single archive
    with MixArchive('/path/to/REDALERT.MIX') as mix:
        palette = mix.load('TEMPERAT.PAL')
        print(mix.size_of('MOUSE.SHP'))

    # Or use the convenience functions
    from mix_data import read_mix_file

    palette = read_mix_file('/path/to/REDALERT.MIX', 'TEMPERAT.PAL')

Overlay Usage:
    from pathlib import Path
    from mix_data import MixConfig, MixSet, Theater

    config = MixConfig(search_paths=[Path('/path/to/game')])
    with MixSet(config) as mixes:
        mixes.mount('REDALERT.MIX')
        mixes.mount('CONQUER.MIX')       # found inside REDALERT.MIX
        mixes.mount('EXPAND.MIX')        # overrides earlier archives
        mixes.mount_theater(Theater.TEMPERATE)
        mixes.cache_all()
        data = mixes.load('MOUSE.SHP')

Advanced Usage:
    from mix_data import decompress

    pixels = decompress(compressed_data, expected_size, strict=True)
"""

from .crc import KeyNames, WestwoodCRC, filename_key, to_signed, westwood_crc
from .blowfish import BlowfishEngine, BlowfishState
from .pk import WESTWOOD_PUBLIC_KEY, PublicKey, decrypt_key_block
from .codec import compress, decompress, decompress_into
from .errors import (
    ArchiveNotFoundError, ArchiveOpenError, BadMagicError, CacheError,
    CorruptDirectoryError, DecompressionError, KeyRecoveryError, MixError,
    MountError, MountOpenError, TooSmallError,
)
from .mix import MixArchive, MixEntry, MixHeader, open_archive
from .config import MixConfig, find_archive, find_case_insensitive
from .manager import MixSet, Theater, default_set, init_default, shutdown_default

__all__ = [
    # Filename hashing
    'westwood_crc',
    'filename_key',
    'to_signed',
    'WestwoodCRC',
    'KeyNames',

    # Cryptography
    'BlowfishEngine',
    'BlowfishState',
    'PublicKey',
    'WESTWOOD_PUBLIC_KEY',
    'decrypt_key_block',

    # Compression
    'decompress',
    'decompress_into',
    'compress',

    # Errors
    'MixError',
    'ArchiveOpenError',
    'TooSmallError',
    'BadMagicError',
    'KeyRecoveryError',
    'CorruptDirectoryError',
    'CacheError',
    'MountError',
    'ArchiveNotFoundError',
    'MountOpenError',
    'DecompressionError',

    # Archives
    'MixArchive',
    'MixEntry',
    'MixHeader',
    'open_archive',

    # Archive sets
    'MixConfig',
    'MixSet',
    'Theater',
    'find_archive',
    'find_case_insensitive',
    'init_default',
    'default_set',
    'shutdown_default',

    # Convenience functions
    'read_mix_file',
    'list_keys',
]

__version__ = '1.0.0'


def read_mix_file(mix_path: str, name: str) -> bytes:
    """
    Convenience function to read a single file from a MIX archive.

    Args:
        mix_path: Path to the .mix file
        name: File name within the archive

    Returns:
        File contents as bytes

    Raises:
        FileNotFoundError: If file not found in archive
    """
    with MixArchive(mix_path) as mix:
        content = mix.load(name)
        if content is None:
            raise FileNotFoundError(f"File not found in archive: {name}")
        return content


def list_keys(mix_path: str) -> list:
    """
    Convenience function to list the directory keys of a MIX archive.

    Args:
        mix_path: Path to the .mix file

    Returns:
        Keys in directory order
    """
    with MixArchive(mix_path) as mix:
        return mix.keys()
