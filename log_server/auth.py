from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, TypeVar, cast

from flask import current_app, g, request

from gatekeeper.policy import PermissionEvaluator, User
from gatekeeper.signing import URLSigner

from .authenticators import Authenticator
from .config import Settings
from .services.reporter import Reporter
from .services.twilio_client import TwilioClient

F = TypeVar("F", bound=Callable[..., Any])
EXTENSION_KEY = "logview"
LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppState:
    """Everything built once at startup; read-only while serving."""

    settings: Settings
    signer: URLSigner
    evaluator: PermissionEvaluator
    authenticator: Authenticator
    reporter: Reporter
    client: TwilioClient


def app_state() -> AppState:
    return cast(AppState, current_app.extensions[EXTENSION_KEY])


def current_user() -> User:
    return cast(User, g.user)


def require_user(view: F) -> F:
    """Authenticate the request and resolve the caller against the policy.

    AuthError and LookupNotFound propagate to the app's error handlers.
    """

    @wraps(view)
    def wrapped(*args: Any, **kwargs: Any):
        state = app_state()
        principal_id = state.authenticator.authenticate(request)
        user, found = state.evaluator.lookup(principal_id)
        if not found:
            LOGGER.debug("%s is not listed in the policy, using the default group", principal_id)
        g.user = user
        return view(*args, **kwargs)

    return cast(F, wrapped)
