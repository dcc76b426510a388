"""Exception hierarchy for mtgjson-views.

Every error raised on purpose by the package derives from
:class:`MtgJsonViewsError`. Several also derive from the built-in exception
a caller would naturally catch (``KeyError`` for unknown names,
``FileNotFoundError`` for missing or corrupt cache files).
"""

from __future__ import annotations


class MtgJsonViewsError(Exception):
    """Base exception for all mtgjson-views errors."""


class UnknownResourceError(MtgJsonViewsError, KeyError):
    """A logical view or file name is not in the CDN catalog."""

    def __init__(self, name: str, kind: str = "resource") -> None:
        self.name = name
        super().__init__(f"Unknown {kind} {name!r}")

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class NotCachedError(MtgJsonViewsError, FileNotFoundError):
    """Offline mode is enabled and the requested file was never downloaded."""


class CorruptCacheError(MtgJsonViewsError, FileNotFoundError):
    """A cached file could not be decoded and has been removed."""


class DownloadError(MtgJsonViewsError):
    """A CDN download failed and no cached copy was used instead."""

    def __init__(self, filename: str, reason: object) -> None:
        self.filename = filename
        super().__init__(f"Download of {filename} failed: {reason}")


class DownloadCancelled(DownloadError):
    """A download was cancelled by its caller before it completed."""

    def __init__(self, filename: str) -> None:
        super().__init__(filename, "cancelled")


class ViewRegistrationError(MtgJsonViewsError):
    """Probing a source or creating its view failed.

    The view is left unregistered so a later call can retry.
    """

    def __init__(self, view_name: str, reason: object) -> None:
        self.view_name = view_name
        super().__init__(f"Failed to register view {view_name!r}: {reason}")
