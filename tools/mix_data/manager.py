"""
Overlay of mounted MIX archives.

A MixSet holds archives in mount order. Every lookup hashes the name once
and searches from the most recently mounted archive back to the first, so a
later mount overrides an earlier one: expansion content overrides base
content, and the theater archive overrides generic art.

At most one theater archive (TEMPERAT.MIX, SNOW.MIX, INTERIOR.MIX) is
mounted at a time; mount_theater() swaps it.

Threading: a MixSet is not synchronized. Mounting, unmounting, caching and
reading are expected to happen on one loading thread; an embedding that
needs several threads should guard the whole set with one lock.

Cached views: cached_view() returns a memoryview into an archive's cache.
It stays readable after free_all_caches() or unmount(), but then refers to
a buffer that no longer belongs to any archive. Copy out of views instead
of holding them across those calls.
"""

import logging
from enum import IntEnum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .config import MixConfig, find_archive
from .crc import KeyNames, filename_key
from .errors import (
    ArchiveNotFoundError, ArchiveOpenError, CacheError, MountOpenError,
)
from .mix import MixArchive, MixEntry

__all__ = ['MixSet', 'Theater', 'init_default', 'default_set', 'shutdown_default']

logger = logging.getLogger(__name__)


class Theater(IntEnum):
    """Terrain sets, each shipped as its own archive."""
    TEMPERATE = 0
    SNOW = 1
    INTERIOR = 2

    @property
    def archive_base(self) -> str:
        return _THEATER_NAMES[self]


_THEATER_NAMES = {
    Theater.TEMPERATE: 'TEMPERAT',
    Theater.SNOW: 'SNOW',
    Theater.INTERIOR: 'INTERIOR',
}


def _base_name(name_or_path: Union[str, Path]) -> str:
    return Path(name_or_path).name.upper()


class MixSet:
    """
    Ordered collection of mounted archives.

    Usage:
        with MixSet(MixConfig(search_paths=[Path('/games/ra')])) as mixes:
            mixes.mount('REDALERT.MIX')
            mixes.mount('CONQUER.MIX')     # nested inside REDALERT.MIX
            mixes.mount_theater(Theater.SNOW)
            shape = mixes.load('MOUSE.SHP')
    """

    def __init__(self, config: Optional[MixConfig] = None):
        self.config = config or MixConfig()
        self._archives: List[MixArchive] = []
        self._theater: Optional[str] = None
        self._theater_archive: Optional[str] = None
        self.names = KeyNames()
        self._initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def init(self) -> 'MixSet':
        """
        Mount the archives listed in config.mount_order.

        Missing archives are skipped; an archive that exists but fails to
        open raises MountOpenError.
        """
        if self._initialized:
            return self
        for name in self.config.mount_order:
            try:
                self.mount(name)
            except ArchiveNotFoundError:
                logger.warning("Startup archive %s not found, skipping", name)
        self._initialized = True
        return self

    def shutdown(self):
        """Unmount and close every archive."""
        while self._archives:
            self._archives.pop().close()
        self._theater = None
        self._theater_archive = None
        self._initialized = False

    def __enter__(self):
        return self.init()

    def __exit__(self, *args):
        self.shutdown()

    def __len__(self) -> int:
        return len(self._archives)

    def __repr__(self) -> str:
        return f"MixSet({self.mounted_names()!r}, theater={self._theater!r})"

    # -------------------------------------------------------------------------
    # Mounting
    # -------------------------------------------------------------------------

    def _mounted(self, name: str) -> Optional[MixArchive]:
        for archive in self._archives:
            if archive.name == name:
                return archive
        return None

    def mounted_names(self) -> List[str]:
        """Base names of mounted archives, first mounted first."""
        return [archive.name for archive in self._archives]

    def is_mounted(self, name_or_path: Union[str, Path]) -> bool:
        return self._mounted(_base_name(name_or_path)) is not None

    def mount(self, name_or_path: Union[str, Path], cache: Optional[bool] = None) -> bool:
        """
        Open an archive and give it the highest lookup priority.

        The archive is looked for on disk (see config.find_archive) and,
        failing that, inside the archives already mounted.

        Args:
            name_or_path: Archive file name or path
            cache: Cache the data section now (defaults to config.cache_on_mount)

        Returns:
            True if mounted, False if an archive with this base name already is

        Raises:
            ArchiveNotFoundError: If no such archive exists
            MountOpenError: If the archive fails to open
            CacheError: If caching was requested and failed
        """
        name = _base_name(name_or_path)
        if self._mounted(name) is not None:
            logger.debug("%s already mounted", name)
            return False

        path = find_archive(str(name_or_path), self.config.search_paths)
        if path is not None:
            archive = MixArchive(path, name=name)
        else:
            data = self.load(name)
            if data is None:
                raise ArchiveNotFoundError(name)
            logger.debug("Mounting %s from %s", name, self.find_owning_archive(name))
            archive = MixArchive(data, name=name)

        try:
            archive.open()
        except ArchiveOpenError as exc:
            raise MountOpenError(name, exc) from exc

        if cache is None:
            cache = self.config.cache_on_mount
        if cache:
            try:
                archive.cache_all()
            except CacheError:
                archive.close()
                raise

        self._archives.append(archive)
        logger.info("Mounted %s (%d files)", name, archive.file_count)
        return True

    def unmount(self, name_or_path: Union[str, Path]) -> bool:
        """
        Close and remove an archive by base name.

        Returns:
            True if an archive was removed
        """
        name = _base_name(name_or_path)
        archive = self._mounted(name)
        if archive is None:
            return False

        self._archives.remove(archive)
        archive.close()
        if name == self._theater_archive:
            self._theater = None
            self._theater_archive = None
        logger.info("Unmounted %s", name)
        return True

    # -------------------------------------------------------------------------
    # Theaters
    # -------------------------------------------------------------------------

    @property
    def theater(self) -> Optional[str]:
        """Name of the active theater, e.g. 'SNOW'."""
        return self._theater

    @property
    def theater_archive(self) -> Optional[str]:
        return self._theater_archive

    def mount_theater(self, theater: Union[Theater, str]) -> bool:
        """
        Make *theater* the active theater, replacing the previous one.

        A theater archive that was already mounted with mount() stays owned
        by that mount: it becomes the active theater, but theater_archive is
        None and later swaps or unmount_theater() leave it mounted.

        Returns:
            True if the theater archive was newly mounted

        Raises:
            ArchiveNotFoundError, MountOpenError: As for mount(); the previous
                theater archive has been unmounted by then
        """
        if isinstance(theater, Theater):
            theater_name = theater.archive_base
        else:
            theater_name = theater.upper()
        archive_name = self.config.theater_archive(theater_name)

        if self._theater_archive is not None and self._theater_archive != archive_name:
            self.unmount(self._theater_archive)

        mounted = self.mount(archive_name)
        if mounted or self._theater_archive == archive_name:
            self._theater_archive = archive_name
        else:
            logger.debug("%s was mounted directly; leaving it mounted on theater change",
                         archive_name)
            self._theater_archive = None
        self._theater = theater_name
        if mounted:
            logger.info("Theater set to %s", theater_name)
        return mounted

    def unmount_theater(self) -> bool:
        """
        Clear the active theater and unmount its archive.

        Returns:
            True if an archive was unmounted
        """
        archive_name = self._theater_archive
        self._theater = None
        self._theater_archive = None
        if archive_name is None:
            return False
        return self.unmount(archive_name)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find_key(self, key: int) -> Optional[Tuple[MixArchive, MixEntry]]:
        """Highest-priority (archive, entry) holding *key*."""
        for archive in reversed(self._archives):
            entry = archive.find_by_key(key)
            if entry is not None:
                return archive, entry
        return None

    def find(self, name: str) -> Optional[Tuple[MixArchive, MixEntry]]:
        return self.find_key(filename_key(name))

    def exists(self, name: str) -> bool:
        """True if any mounted archive holds *name*."""
        return self.find(name) is not None

    contains = exists
    __contains__ = exists

    def exists_key(self, key: int) -> bool:
        return self.find_key(key) is not None

    def size_of(self, name: str) -> Optional[int]:
        found = self.find(name)
        return found[1].size if found else None

    def find_owning_archive(self, name: str) -> Optional[str]:
        """Base name of the archive that serves *name*."""
        found = self.find(name)
        return found[0].name if found else None

    def load(self, name: str) -> Optional[bytes]:
        """Contents of *name* from the highest-priority archive, or None."""
        found = self.find(name)
        if found is None:
            return None
        archive, entry = found
        return archive.read_entry(entry)

    def load_into(self, name: str, buffer) -> int:
        """Copy *name* into *buffer*; returns bytes copied (0 if not found)."""
        found = self.find(name)
        if found is None:
            return 0
        archive, entry = found
        return archive.read_entry_into(entry, buffer)

    def read_partial(self, name: str, offset: int, length: int) -> bytes:
        """Read *length* bytes of *name* from *offset*; b'' if absent or out of range."""
        found = self.find(name)
        if found is None:
            return b''
        archive, entry = found
        return archive.read_entry(entry, offset, length)

    def cached_view(self, name: str) -> Optional[memoryview]:
        """
        Zero-copy view of *name* if its owning archive is cached.

        See the module notes on how long a view may be held.
        """
        found = self.find(name)
        if found is None:
            return None
        archive, entry = found
        return archive.entry_view(entry)

    # -------------------------------------------------------------------------
    # Caching
    # -------------------------------------------------------------------------

    def cache_all(self):
        """
        Cache every mounted archive.

        Raises:
            CacheError: Naming every archive that could not be cached; the
                others stay cached
        """
        failed = []
        for archive in self._archives:
            try:
                archive.cache_all()
            except CacheError as exc:
                logger.warning("Could not cache %s: %s", archive.name, exc)
                failed.append(archive.name)
        if failed:
            raise CacheError(f"Failed to cache: {', '.join(failed)}")

    def free_all_caches(self):
        for archive in self._archives:
            archive.free_cache()

    def cache(self, name_or_path: Union[str, Path]) -> bool:
        """
        Cache one mounted archive, selected by base name.

        Returns:
            True if the archive is mounted (and now cached)

        Raises:
            CacheError: If the archive could not be cached
        """
        archive = self._mounted(_base_name(name_or_path))
        if archive is None:
            return False
        archive.cache_all()
        return True

    def free_cache(self, name_or_path: Union[str, Path]) -> bool:
        """Release the cache of one mounted archive; False if not mounted."""
        archive = self._mounted(_base_name(name_or_path))
        if archive is None:
            return False
        archive.free_cache()
        return True

    # -------------------------------------------------------------------------
    # Known names
    # -------------------------------------------------------------------------

    def register_name(self, name: str) -> int:
        """Remember *name* so its key can be mapped back; returns the key."""
        return self.names.register(name)

    def register_names(self, names: Iterable[str]):
        self.names.register_all(names)

    def lookup_name(self, key: int) -> Optional[str]:
        """Registered filename for *key*, if any."""
        return self.names.lookup(key)


# =============================================================================
# Process-wide default set
# =============================================================================

_default: Optional[MixSet] = None


def init_default(config: Optional[MixConfig] = None) -> MixSet:
    """Create and initialize the process-wide MixSet (once)."""
    global _default
    if _default is None:
        _default = MixSet(config).init()
    return _default


def default_set() -> MixSet:
    """
    The process-wide MixSet.

    Raises:
        RuntimeError: If init_default() has not been called
    """
    if _default is None:
        raise RuntimeError("mix_data default set is not initialized; call init_default()")
    return _default


def shutdown_default():
    """Shut down and forget the process-wide MixSet."""
    global _default
    if _default is not None:
        _default.shutdown()
        _default = None
