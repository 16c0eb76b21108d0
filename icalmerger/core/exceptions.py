"""Exception hierarchy for the calendar merge service.

Fetch errors are per source and never abort a merge cycle; the cycle-level
errors (`NoUsableSourceError`, `ArtifactWriteError`) are raised to whoever
triggered the cycle so the scheduler or HTTP layer can decide what to do.
Degraded parsing is not an exception: it is reported through
`FidelityTier` and a warning log entry.
"""

from __future__ import annotations

from typing import Optional


class IcalMergerError(Exception):
    """Base exception for all icalmerger errors."""


class ConfigError(IcalMergerError):
    """Configuration file could not be read or has the wrong shape."""


class FetchError(IcalMergerError):
    """A calendar source could not be retrieved.

    Attributes:
        source_name: Name of the source that failed, when known
        status_code: HTTP status code, when the failure came from a response
    """

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.source_name = source_name
        self.status_code = status_code


class FetchNetworkError(FetchError):
    """Connection, DNS or unexpected HTTP status failure."""


class FetchTimeoutError(FetchError):
    """The source did not answer within the configured timeout."""


class FetchNotFoundError(FetchError):
    """Local file missing or remote server answered 404."""


class FetchAuthError(FetchError):
    """Remote server rejected the credentials (401/403)."""


class NoUsableSourceError(IcalMergerError):
    """Every source failed or yielded no real events.

    The merge cycle is a no-op when this is raised; the previous artifact
    stays in place untouched.
    """


class ArtifactWriteError(IcalMergerError):
    """The merged artifact could not be persisted.

    Attributes:
        path: Artifact path that could not be written
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
