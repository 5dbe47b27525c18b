class LitmusError(ValueError):
    """Base class for every failure raised by the translator."""


class LitmusParseError(LitmusError):
    """The input text has no recoverable structure (header, braces, threads)."""


class LitmusExportError(LitmusError):
    """The graph cannot be represented faithfully in the requested dialect."""

    def __init__(self, message):
        if not message.startswith("Cannot export"):
            message = f"Cannot export: {message}"
        super().__init__(message)
