from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    PARSE = "parse"
    VERSION_MISMATCH = "version_mismatch"
    UNSUPPORTED = "unsupported"
    PATH_CONTAINMENT = "path_containment"
    MISSING_STATE = "missing_state"
    SOURCE = "source"
    NOT_FOUND = "not_found"
    CONFIG = "config"


class InstallerError(RuntimeError):
    """Base class for every failure raised by the install pipeline."""

    kind: ErrorKind = ErrorKind.PARSE


class TransportError(InstallerError):
    """Raised when a request fails or answers with a non-2xx status."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class ManifestError(InstallerError):
    """Raised when a manifest or other remote document cannot be parsed."""

    kind = ErrorKind.PARSE


class ManifestVersionError(ManifestError):
    kind = ErrorKind.VERSION_MISMATCH

    def __init__(self, found: int, supported: int) -> None:
        super().__init__(f"Unsupported manifest version '{found}' (expected {supported}).")
        self.found = found
        self.supported = supported


class UnsupportedError(InstallerError):
    """Raised for a source or loader kind this installer does not understand."""

    kind = ErrorKind.UNSUPPORTED


class PathContainmentError(InstallerError):
    """Raised when a path would escape the modpack root."""

    kind = ErrorKind.PATH_CONTAINMENT


class MissingStateError(InstallerError):
    kind = ErrorKind.MISSING_STATE


class SourceError(InstallerError):
    """Raised when a download source does not yield a usable file."""

    kind = ErrorKind.SOURCE


class ItemNotFoundError(SourceError):
    kind = ErrorKind.NOT_FOUND


class ConfigError(InstallerError):
    """Raised when configuration cannot be loaded."""

    kind = ErrorKind.CONFIG
