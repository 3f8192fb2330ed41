"""Errors shared by more than one component."""


class ConfigurationError(Exception):
    """Raised when a required external dependency is unconfigured or invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
