"""Error taxonomy shared by the gateway's clients, builders and HTTP layer."""
from __future__ import annotations


class GatewayError(Exception):
    """Base error carrying the HTTP status the API layer should answer with."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidParameterError(GatewayError):
    code = "INVALID_PARAMETER"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400)


class MalformedDescriptorError(InvalidParameterError):
    pass


class MissingCredentialError(GatewayError):
    code = "MISSING_CREDENTIAL"

    def __init__(self, message: str = "Missing X-Payment-Key header") -> None:
        super().__init__(message, status_code=401)


class ServiceUnavailableError(GatewayError):
    """The key-manager service could not be reached or answered garbage."""

    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=502)


class ServiceRejectedError(GatewayError):
    """The key-manager service answered with an application-level error."""

    code = "SERVICE_REJECTED"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400)


class LedgerUnavailableError(GatewayError):
    code = "LEDGER_UNAVAILABLE"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=502)


class InvalidLedgerResponseError(GatewayError):
    code = "INVALID_LEDGER_RESPONSE"

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=502)
