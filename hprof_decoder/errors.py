"""Exception hierarchy for the HPROF decoder."""
from __future__ import annotations

from typing import Optional


class HprofError(Exception):
    """Base class for every error raised while decoding a heap dump."""

    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (offset 0x{offset:X})"
        super().__init__(message)


class HprofFormatError(HprofError):
    """The buffer is not a heap dump this decoder can read.

    Raised for a bad magic prefix, an unsupported identifier size or a
    header cut short. No partial model is produced.
    """


class HprofDecodeError(HprofError):
    """A record could not be decoded.

    Recoverable: the dispatcher catches it, records a warning and resumes
    at the next top-level record.
    """
