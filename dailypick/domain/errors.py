class RateLimited(Exception):
    """Operation was rate limited by provider. Includes suggested wait time in milliseconds."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(Exception):
    """Transient provider or network failure. The run is aborted, not retried."""


class NotFound(Exception):
    """Requested resource was not found."""


class MutationFailure(Exception):
    """The streaming service did not confirm adding a track to the playlist."""

    def __init__(self, playlist_id: str, track_uri: str, message: str = "Failed to add song to playlist") -> None:
        super().__init__(message)
        self.playlist_id = playlist_id
        self.track_uri = track_uri


class AuthorizationRequired(Exception):
    """No usable OAuth credentials; the authorization-code flow must be run."""


class RunInProgress(Exception):
    """A daily selection run is already executing."""
