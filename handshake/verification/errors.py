"""Exceptions raised by the handshake services."""


class ServiceUnavailableError(Exception):
    """
    The record store could not be reached or failed mid-request.

    Distinct from every taxonomy outcome: it means "try again later", not
    "your input was wrong".
    """

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(message)


class CodeGenerationError(ServiceUnavailableError):
    """No free code could be drawn within the configured attempts."""
    pass
