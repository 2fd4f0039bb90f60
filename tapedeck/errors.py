"""Exceptions raised by tapedeck adapters and playback services.

Every error carries a developer-facing ``message`` and a class-level
``user_message`` that the UI can show as-is.
"""


class TapedeckError(Exception):
    """Base exception for all tapedeck errors."""

    user_message = "Something went wrong."

    def __init__(self, message: str = "") -> None:
        self.message = message or self.user_message
        super().__init__(self.message)


class InvalidConfiguration(TapedeckError):
    """Base URL or credentials are missing or malformed."""

    user_message = "This music source is not configured."


class NotAuthenticated(TapedeckError):
    """No session, or the server no longer accepts it."""

    user_message = "Not signed in to this music source."


class AuthenticationFailed(NotAuthenticated):
    """The server rejected the credentials."""

    user_message = "Sign-in failed. Check your username and password."

    def __init__(self, message: str = "", code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class NetworkError(TapedeckError):
    """Transport failure or timeout talking to a backend."""

    user_message = "Could not reach the music server."


class HTTPError(NetworkError):
    """Backend answered with a non-success HTTP status."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"HTTP {status}")


class APIError(TapedeckError):
    """Backend reported a failure that is not an authentication problem."""

    user_message = "The music server returned an error."

    def __init__(self, message: str = "", code: int | None = None) -> None:
        self.code = code
        super().__init__(message)


class DecodingError(TapedeckError):
    """Response did not match any known shape."""

    user_message = "The music server sent an unexpected response."


class EntityNotFound(TapedeckError):
    """Requested container or song is unknown to the backend."""

    user_message = "No songs found."


class PlaybackFailed(TapedeckError):
    """The media engine could not play the current song."""

    user_message = "This song could not be played."
