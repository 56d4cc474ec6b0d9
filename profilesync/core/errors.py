"""
Exception hierarchy for the profile sync service.

Storage-facing services wrap driver errors in these types with
``raise ... from exc`` so callers can tell "not found" apart from real
failures, and an authentication failure apart from other provider errors.
"""


class ProfileSyncError(Exception):
    """Base class for all profile sync errors."""


# ---------------------------------------------------------------------------
# Runtime state store
# ---------------------------------------------------------------------------


class RuntimeStateError(ProfileSyncError):
    """The runtime state store could not be read or written."""


class StateNotFoundError(RuntimeStateError):
    """No value has ever been written for the key."""

    def __init__(self, key: str):
        super().__init__(f"runtime state not found: {key}")
        self.key = key


class InvalidTimeError(RuntimeStateError):
    """A stored value could not be parsed as a timestamp."""


class LockError(RuntimeStateError):
    """Advisory lock acquisition or release failed (not contention)."""


# ---------------------------------------------------------------------------
# Link sync
# ---------------------------------------------------------------------------


class LinkSyncError(ProfileSyncError):
    """A link or import could not be read or persisted."""


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class ProviderError(ProfileSyncError):
    """A remote provider call failed."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """The provider rejected the link's credentials."""


class TokenRefreshError(ProviderError):
    """Exchanging a refresh token for a new access token failed."""


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


class UnknownWorkerError(ProfileSyncError):
    """No enabled sync worker is registered under the name."""

    def __init__(self, name: str):
        super().__init__(f"unknown sync worker: {name}")
        self.name = name


# ---------------------------------------------------------------------------
# Stories
# ---------------------------------------------------------------------------


class StoryError(ProfileSyncError):
    """A draft story could not be created."""
