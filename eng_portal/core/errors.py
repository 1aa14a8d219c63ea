from typing import Optional


class PortalError(Exception):
    """Base for every error the entitlement/session core reports to its caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidCode(PortalError):
    status_code = 404

    def __init__(self, message: str = "Invalid or already used code."):
        super().__init__(message)


class ExhaustedCode(PortalError):
    status_code = 409

    def __init__(self, message: str = "This code has reached its usage limit."):
        super().__init__(message)


class NotAuthenticated(PortalError):
    status_code = 401

    def __init__(self, message: str = "No user is signed in."):
        super().__init__(message)


class StorageUnavailable(PortalError):
    """Wraps any failure of the document or blob store."""

    status_code = 503

    def __init__(self, message: str = "Storage is unavailable.", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class IdentityProviderError(PortalError):
    """Wraps identity-provider failures (weak password, email in use, wrong password...)."""

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code
