"""
Configuration for locating and mounting MIX archives.

Archive names are resolved case-insensitively, since the games shipped on
case-insensitive file systems and their data is referenced in upper case.
The default search path is the first existing of ./data and ../data,
followed by the current directory.

Environment variables read by MixConfig.from_env():
    MIX_DATA_PATH     directories to search, separated by os.pathsep
    MIX_MOUNT_ORDER   comma-separated archives mounted by MixSet.init()
    MIX_CACHE         cache archives as they are mounted (1/true/yes/on)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

__all__ = [
    'MixConfig', 'default_search_paths', 'find_case_insensitive', 'find_archive',
    'ENV_DATA_PATH', 'ENV_MOUNT_ORDER', 'ENV_CACHE',
]

ENV_DATA_PATH = 'MIX_DATA_PATH'
ENV_MOUNT_ORDER = 'MIX_MOUNT_ORDER'
ENV_CACHE = 'MIX_CACHE'

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def default_search_paths() -> List[Path]:
    """The first existing data directory (./data, ../data), then '.'."""
    paths = []
    for candidate in (Path('data'), Path('..') / 'data'):
        if candidate.is_dir():
            paths.append(candidate)
            break
    paths.append(Path('.'))
    return paths


def find_case_insensitive(directory: Path, filename: str) -> Optional[Path]:
    """Find *filename* in *directory* ignoring case; exact matches win."""
    directory = Path(directory)
    exact = directory / filename
    if exact.is_file():
        return exact

    wanted = filename.lower()
    try:
        for entry in directory.iterdir():
            if entry.name.lower() == wanted and entry.is_file():
                return entry
    except OSError:
        return None
    return None


def find_archive(name: str, search_paths: Iterable[Path]) -> Optional[Path]:
    """
    Resolve an archive name or path to a file on disk.

    A name with a directory part is looked up in that directory only;
    a bare name is looked up in each search path in order.
    """
    path = Path(name)
    if path.is_file():
        return path
    if path.parent != Path('.'):
        return find_case_insensitive(path.parent, path.name)
    for directory in search_paths:
        found = find_case_insensitive(directory, path.name)
        if found is not None:
            return found
    return None


@dataclass
class MixConfig:
    """Settings for a MixSet."""
    search_paths: List[Path] = field(default_factory=default_search_paths)
    mount_order: List[str] = field(default_factory=list)
    cache_on_mount: bool = False
    theater_suffix: str = '.MIX'

    def theater_archive(self, theater: str) -> str:
        """Archive file name for a theater, e.g. 'SNOW' -> 'SNOW.MIX'."""
        return f"{theater.upper()}{self.theater_suffix}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'MixConfig':
        """Build a configuration from environment variables."""
        if environ is None:
            environ = os.environ

        config = cls()
        data_path = environ.get(ENV_DATA_PATH)
        if data_path:
            config.search_paths = [Path(p) for p in data_path.split(os.pathsep) if p]
        mount_order = environ.get(ENV_MOUNT_ORDER)
        if mount_order:
            config.mount_order = [name.strip() for name in mount_order.split(',') if name.strip()]
        cache = environ.get(ENV_CACHE)
        if cache is not None:
            config.cache_on_mount = cache.strip().lower() in _TRUE_VALUES
        return config
