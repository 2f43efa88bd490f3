"""
Application errors.

The token endpoint speaks the OAuth error shape (``{"error": ..., "error_description": ...}``), the
virtual-classroom endpoints speak the provider envelope with a numeric code. Both are raised as
HTTPException subclasses and rendered by the handlers registered in ``create_app``.
"""

from typing import Any

from fastapi import HTTPException, status


class OAuthError(HTTPException):
    """
    Error returned by the token endpoint.
    """

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: dict[str, Any] | None = None,
    ):
        super().__init__(status_code=status_code, detail=error_description or error, headers=headers)
        self.error = error
        self.error_description = error_description

    def to_content(self) -> dict[str, Any]:
        content = {"error": self.error}
        if self.error_description:
            content["error_description"] = self.error_description
        return content


class InvalidClientError(OAuthError):
    def __init__(self, detail: str = "client_id and client_secret are required"):
        super().__init__(error="invalid_client", error_description=detail)


class UnsupportedGrantTypeError(OAuthError):
    def __init__(self):
        super().__init__(error="unsupported_grant_type")


class ServerError(OAuthError):
    def __init__(self):
        super().__init__(error="server_error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


class ApiError(HTTPException):
    """
    Error returned by a protected endpoint, rendered as the provider error envelope.
    """

    def __init__(self, status_code: int, code: int, message: str, headers: dict[str, Any] | None = None):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.message = message


class ValidationFailedError(ApiError):
    def __init__(self):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, 50001, "internal_validation_error")


class SessionNotFoundError(ApiError):
    def __init__(self, code: int = 40420):
        super().__init__(status.HTTP_404_NOT_FOUND, code, "session_not_found")


class InstructorNotFoundError(ApiError):
    def __init__(self):
        super().__init__(status.HTTP_404_NOT_FOUND, 40430, "instructor_not_found")


class OperationFailedError(ApiError):
    """
    Store failure inside a protected endpoint, e.g. ``OperationFailedError(50010, "create_session_failed")``.
    """

    def __init__(self, code: int, message: str):
        super().__init__(status.HTTP_500_INTERNAL_SERVER_ERROR, code, message)


class AdminError(HTTPException):
    """
    Error returned by the admin endpoints, rendered as the raw ``content`` mapping.
    """

    def __init__(self, status_code: int, content: dict[str, Any]):
        super().__init__(status_code=status_code, detail=content.get("error"))
        self.content = content
