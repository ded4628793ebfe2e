"""
Exception types for MIX archive handling.

Opening an archive either succeeds or raises one of the ArchiveOpenError
subclasses. Looking up a name that is not present is never an error: the
read functions return None, b'' or 0 instead, because a miss is the normal
outcome when searching many mounted archives in priority order.
"""

__all__ = [
    'MixError',
    'ArchiveOpenError', 'TooSmallError', 'BadMagicError',
    'KeyRecoveryError', 'CorruptDirectoryError',
    'CacheError',
    'MountError', 'ArchiveNotFoundError', 'MountOpenError',
    'DecompressionError',
]


class MixError(Exception):
    """Base class for all errors raised by mix_data."""


class ArchiveOpenError(MixError):
    """An archive header could not be parsed."""


class TooSmallError(ArchiveOpenError):
    """The source is shorter than the smallest possible header."""


class BadMagicError(ArchiveOpenError):
    """The extended header carries flag bits this reader does not know."""


class KeyRecoveryError(ArchiveOpenError):
    """The public-key block did not decrypt to a usable session key."""


class CorruptDirectoryError(ArchiveOpenError):
    """The entry table disagrees with its declared count or data size."""


class CacheError(MixError):
    """The data section could not be read into memory."""


class MountError(MixError):
    """An archive could not be added to a MixSet."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name


class ArchiveNotFoundError(MountError, FileNotFoundError):
    """No file or nested archive with the requested name exists."""

    def __init__(self, name: str):
        super().__init__(name, f"Archive not found: {name}")


class MountOpenError(MountError):
    """The archive file exists but failed to open."""

    def __init__(self, name: str, reason: ArchiveOpenError):
        super().__init__(name, f"Failed to open archive {name}: {reason}")
        self.reason = reason


class DecompressionError(MixError):
    """A compressed stream ended before producing the expected output."""
