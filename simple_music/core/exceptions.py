"""
Exception classes for simple-music.

Exceptions here describe hard failures: broken configuration, catalog
credentials that are rejected, manifests that cannot be decoded. Soft
failures during acquisition (a provider that has no copy of the track, a
search that returns nothing) are NOT raised across the orchestrator
boundary; they are reported as AcquisitionResult values, booleans or
empty lists so the playback queue can keep going.

Exception Hierarchy:
    SimpleMusicError (base)
        ConfigError - Configuration file issues
        CatalogError - Spotify catalog lookup issues
        ResolverError - YouTube Music search issues
        ManifestError - DASH manifest decoding issues
        ProviderError - Lossless provider HTTP issues
        DownloadError - Audio download / conversion issues
        MetadataError - Tag embedding issues
"""


class SimpleMusicError(Exception):
    """
    Base exception for all simple-music errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (track info, URLs).

    Example:
        try:
            config = load_config(path)
        except SimpleMusicError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description shown to the user.
            details: Optional dictionary with additional context. Common keys:
                     - 'spotify_id': catalog track ID involved in the error
                     - 'url': URL that caused the error
                     - 'original_error': the wrapped exception text
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SimpleMusicError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - An explicit --config path that does not exist
        - config.yaml has invalid YAML syntax
        - Only one of spotify.client_id / spotify.client_secret given
        - Invalid field values (unknown streaming quality, negative limits)
    """
    pass


class CatalogError(SimpleMusicError):
    """
    Raised when the Spotify catalog cannot be queried.

    Common causes:
        - No client credentials configured
        - Credentials rejected by Spotify
        - Album or track ID not found

    Attributes:
        is_auth_error: True if the failure is an authentication problem.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_auth_error: bool = False
    ) -> None:
        super().__init__(message, details)
        self.is_auth_error = is_auth_error


class ResolverError(SimpleMusicError):
    """
    Raised by the YouTube Music search backend.

    The TrackResolver catches this internally and returns an empty
    candidate list; it only escapes from the low-level search helpers.
    """
    pass


class ManifestError(SimpleMusicError):
    """
    Raised when a DASH-style manifest yields no downloadable URL.

    Common causes:
        - Document contains neither a BaseURL, a SegmentTemplate nor bare URLs
        - SegmentTemplate without a SegmentTimeline while timeline
          estimation is disabled (lossless.estimate_missing_timeline)
    """
    pass


class ProviderError(SimpleMusicError):
    """
    Raised when a lossless provider answers with an unusable response.

    Attributes:
        provider: Short provider label ('song.link', 'tidal', 'deezer', 'qobuz').
        status_code: HTTP status code, if one was received.
        is_rate_limit: True for HTTP 429 responses.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider = provider
        self.status_code = status_code
        self.is_rate_limit = status_code == 429


class DownloadError(SimpleMusicError):
    """
    Raised when an audio payload cannot be fetched or written.

    Common causes:
        - Connection dropped mid-transfer
        - Destination directory not writable
        - Extractor returned no audio-only format
    """
    pass


class MetadataError(SimpleMusicError):
    """
    Raised when tags cannot be written to an audio file.

    Tagging is best-effort: MetadataTagger.tag() catches this and returns
    False, so it only escapes from the per-format embedding helpers.
    """
    pass
