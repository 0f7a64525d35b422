class MpqError(Exception):
    """Base class for mpqtool errors."""


# Archive structure / collaborator side
class ArchiveOpenError(MpqError):
    def __init__(self, cause):
        self.cause = cause
        super().__init__(f"Error while opening the MPQ archive: {cause}")


class ArchiveClosedError(MpqError):
    pass


class EntryNotFoundError(MpqError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"File not found in archive: {name}")


class EntryReadError(MpqError):
    pass


class UnsupportedCompressionError(EntryReadError):
    pass


class ArchiveWriteError(MpqError):
    pass


class ListfileNotFoundError(MpqError):
    def __init__(self, message: str = "Listfile not found in archive"):
        super().__init__(message)


# Host filesystem / pipeline side
class FileOpenError(MpqError):
    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to open file [{path}]: {cause}")


class PathEscapeError(MpqError):
    def __init__(self, path: str, reason: str = "path escapes the output directory"):
        self.path = path
        super().__init__(f"Refusing to write [{path}]: {reason}")


class DirCreationError(MpqError):
    def __init__(self, path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Could not create output directory [{path}]: {cause}")


class InvalidPatternError(MpqError):
    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid filter pattern {pattern!r}: {reason}")
