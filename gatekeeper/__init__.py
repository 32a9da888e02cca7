"""Access-control core: policy evaluation, resource age limits and URL signing."""

from .age import check_resource_age, parse_duration
from .errors import (
    AccessError,
    AuthError,
    AuthProviderError,
    ConfigurationError,
    LookupNotFound,
    PermissionDenied,
    ResourceTooOld,
    SecretKeyError,
    SignatureExpired,
    SignatureInvalid,
)
from .policy import Group, Permission, PermissionEvaluator, Policy, User, load_policy, load_policy_file, validate_policy
from .signing import SignedToken, URLSigner, get_secret_key, validate_secret_key

__all__ = [
    "AccessError",
    "AuthError",
    "AuthProviderError",
    "ConfigurationError",
    "Group",
    "LookupNotFound",
    "Permission",
    "PermissionDenied",
    "PermissionEvaluator",
    "Policy",
    "ResourceTooOld",
    "SecretKeyError",
    "SignatureExpired",
    "SignatureInvalid",
    "SignedToken",
    "URLSigner",
    "User",
    "check_resource_age",
    "get_secret_key",
    "load_policy",
    "load_policy_file",
    "parse_duration",
    "validate_policy",
    "validate_secret_key",
]
