"""Exception types shared across the assistant."""


class AssistantError(Exception):
    """Base class for assistant failures."""
    pass


class AuthError(AssistantError):
    """Sign-in, sign-up or sign-out failed."""
    pass


class SessionRequiredError(AuthError):
    """An operation needs a signed-in session."""
    pass


class MicrophonePermissionError(AssistantError, PermissionError):
    """The microphone could not be opened (denied or unavailable)."""
    pass


class NetworkError(AssistantError):
    """A remote call (STT, TTS, storage, identity) failed."""
    pass


class DataError(AssistantError):
    """Audio or text payload is malformed or missing."""
    pass


class ObjectNotFound(AssistantError):
    """No object stored under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


class PipelineBusyError(AssistantError):
    """A previous recording is still being processed."""
    pass


class RecorderStateError(AssistantError):
    """Recorder operation is not valid in its current state."""
    pass


class PlaybackError(AssistantError):
    """Audio could not be decoded or played."""
    pass
