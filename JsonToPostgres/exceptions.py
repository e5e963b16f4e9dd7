# Contains the package exceptions


class JsonImportError(Exception):
    """Base exception for the JSON import pipeline."""
    pass


class JsonParseError(JsonImportError, ValueError):
    """
    Raised when the input text is not valid JSON.

    Nothing is normalized when this is raised, so callers never see partial tables.
    """

    def __init__(self, message, line=None, column=None):
        super().__init__(message)
        self.line = line
        self.column = column
