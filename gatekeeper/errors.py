from __future__ import annotations


class AccessError(Exception):
    """Base class for every error raised by the access-control core.

    ``status_code`` is the HTTP status the web layer should answer with; the
    core never imports a web framework.
    """

    status_code = 500
    title = "Server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.title)
        self.message = message or self.title


class ConfigurationError(AccessError):
    title = "Invalid configuration"


class SecretKeyError(ConfigurationError):
    title = "Invalid secret key"


class LookupNotFound(AccessError):
    status_code = 403
    title = "User not found in the policy, and no default configured"


class PermissionDenied(AccessError):
    status_code = 403
    title = "You do not have permission to access that information"


class ResourceTooOld(AccessError):
    status_code = 403
    title = "Cannot access this resource because its age exceeds the viewable limit"


class SignatureError(AccessError):
    status_code = 403
    title = "Access denied"


class SignatureInvalid(SignatureError):
    title = "Invalid signature"


class SignatureExpired(SignatureError):
    title = "Signature expired"


class AuthError(AccessError):
    status_code = 401
    title = "Authentication required"


class AuthProviderError(AuthError):
    title = "Could not verify your identity with the login provider"
