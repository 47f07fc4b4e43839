class ScriptError(Exception):
    """Script-manager error."""


class ScriptImportError(ScriptError):
    """Raised when an imported file cannot be stored under the script root."""

    def __init__(self, message: str, *, filename: str | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.filename = filename
        self.reason = reason


class ChannelClosedError(ScriptError):
    """Request sent over a channel whose other end is gone."""
