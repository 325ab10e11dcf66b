"""
Error taxonomy for the caption pipeline.

Every error derives from CaptionerError, which is a RuntimeError so callers
that only know about RuntimeError keep working.
"""


class CaptionerError(RuntimeError):
    """Base class for user-visible pipeline failures."""


class DecodeError(CaptionerError):
    """The video has no audio track or its audio cannot be decoded."""


class ModelLoadError(CaptionerError):
    """The speech model could not be created. Retry by transcribing again."""


class BusyError(CaptionerError):
    """A transcription or export job is already running."""


class EncoderUnsupportedError(CaptionerError):
    """The requested container/codec is not available in this FFmpeg build."""


class TranscriptionError(CaptionerError):
    """Inference failed, including the coarse-timestamp fallback."""


class ExportError(CaptionerError):
    """A frame could not be decoded, rendered or written during export."""
