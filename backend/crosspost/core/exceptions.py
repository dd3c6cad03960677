"""Error taxonomy shared by the OAuth and publishing layers.

The HTTP layer turns these into status codes or frontend redirects; the
publish worker uses them to decide between retrying a job and failing it
for good.
"""


class CrosspostError(Exception):
    """Base class for all application errors"""


class NotConfiguredError(CrosspostError):
    """Client credentials for a platform are missing"""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"{platform} OAuth is not configured")


class InvalidStateError(CrosspostError):
    """OAuth state token is unknown, already used, or belongs to another platform"""

    def __init__(self, message: str = "Unknown or already used OAuth state, please restart authentication"):
        super().__init__(message)


class ExpiredStateError(InvalidStateError):
    def __init__(self):
        super().__init__("OAuth state has expired, please restart authentication")


class NotConnectedError(CrosspostError):
    """No active credential exists for the requested identity"""

    def __init__(self, platform: str, user_id: str = None):
        self.platform = platform
        self.user_id = user_id
        super().__init__(f"No active {platform} connection for user {user_id}")


class ReauthenticationRequired(CrosspostError):
    """The stored credential cannot be refreshed; the user must reconnect"""


class NoRefreshTokenError(ReauthenticationRequired):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"No refresh token available for {platform}, please reconnect")


class RefreshExpiredError(ReauthenticationRequired):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"{platform} refresh token has expired, please reconnect")


class ProviderError(CrosspostError):
    """Non-2xx response from a platform API.

    Carries the HTTP status and the raw response body so operators can see
    exactly what the provider said.
    """

    def __init__(self, message: str, status_code: int = None, body: str = None):
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"{message} ({status_code}): {body}"
        super().__init__(message)

    @classmethod
    def from_response(cls, message: str, response):
        return cls(message, status_code=response.status_code, body=response.text)


class TokenRefreshError(ProviderError):
    """The provider refused a token refresh; retrying the publish job cannot fix it"""

    @classmethod
    def wrap(cls, platform: str, error: Exception):
        if isinstance(error, ProviderError):
            return cls(f"{platform} token refresh failed", status_code=error.status_code, body=error.body)
        return cls(f"{platform} token refresh failed: {error}")


class ContentValidationError(CrosspostError):
    """Content violates a platform constraint; never retried"""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors))


class PublishTimeoutError(CrosspostError):
    """A bounded wait ran out before the platform finished processing"""


class PublishFailedError(CrosspostError):
    """The platform explicitly rejected the media or post"""


class JobTimeoutError(CrosspostError):
    """A publish job ran past its end-to-end ceiling"""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Job timed out after {timeout_seconds:.0f} seconds")
