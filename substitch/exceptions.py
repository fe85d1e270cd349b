"""Custom Exceptions for the SubStitch application."""

class SubStitchError(Exception):
    """Base class for exceptions in this module."""
    pass

class ConfigurationError(SubStitchError):
    """Exception raised for errors in configuration loading."""
    pass

class InvalidConfigurationError(ConfigurationError):
    """Exception raised for invalid planner or pipeline parameters. Fatal, raised before work starts."""
    pass

class DecodeError(SubStitchError):
    """Exception raised when the source media cannot be decoded into PCM."""
    pass

class InferenceError(SubStitchError):
    """Exception raised by the speech model for a single chunk."""
    pass

class TransformError(SubStitchError):
    """Exception raised by a text-transform provider (translation/correction) for one entry."""
    pass

class FormattingError(SubStitchError):
    """Exception raised for errors during subtitle formatting or parsing."""
    pass

class MuxError(SubStitchError):
    """Exception raised when ffmpeg fails to attach subtitles to the media."""
    pass

class PersistenceError(SubStitchError):
    """Exception raised when a session cannot be saved or restored."""
    pass

class FileSystemError(SubStitchError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass


class TimelineEditError(SubStitchError):
    """Base class for editing-operation errors. The timeline is unchanged when raised."""
    pass

class EntryNotFoundError(TimelineEditError):
    """No subtitle entry with the given id."""

    def __init__(self, entry_id: int):
        super().__init__(f"No subtitle entry with id {entry_id}")
        self.entry_id = entry_id

class InvalidRangeError(TimelineEditError):
    """A time span or split point is not valid for the operation."""
    pass

class OverlapError(TimelineEditError):
    """The requested span would overlap another entry."""
    pass

class NotAdjacentError(TimelineEditError):
    """Entries to merge are not neighbours in the timeline."""
    pass
