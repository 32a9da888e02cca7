from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from email.utils import parseaddr
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from gatekeeper.age import DEFAULT_MAX_RESOURCE_AGE, parse_duration
from gatekeeper.errors import ConfigurationError
from gatekeeper.policy import Policy, load_policy, load_policy_file
from gatekeeper.signing import get_secret_key

from .runtime import env_int, env_str

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yml"
DEFAULT_PORT = 4114
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000
DEFAULT_SESSION_TTL = timedelta(days=7)
DEFAULT_MEDIA_URL_TTL = timedelta(minutes=30)
AUTH_SCHEMES = ("", "basic", "google")
REALMS = ("", "local", "prod")


class FileConfig(BaseModel):
    """Shape of the YAML configuration file."""

    model_config = ConfigDict(extra="forbid")

    port: int = DEFAULT_PORT
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    realm: str = ""
    timezone: str = ""
    public_host: str = ""
    page_size: int = 0
    secret_key: str = ""
    max_resource_age: Any = 0
    show_media_by_default: bool | None = None
    email_address: str = ""
    error_reporter: str = ""
    error_reporter_token: str = ""
    auth_scheme: str = ""
    basic_auth_user: str = ""
    basic_auth_password: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    session_ttl: Any = 0
    media_url_ttl: Any = 0
    policy: Any = None
    policy_file: str = ""

    @field_validator("realm")
    @classmethod
    def _known_realm(cls, value: str) -> str:
        if value not in REALMS:
            raise ValueError(f"unknown realm {value!r}, expected 'local' or 'prod'")
        return value

    @field_validator("auth_scheme")
    @classmethod
    def _known_auth_scheme(cls, value: str) -> str:
        if value not in AUTH_SCHEMES:
            raise ValueError(f"unknown auth scheme {value!r}")
        return value


@dataclass(frozen=True)
class Settings:
    secret_key: bytes
    policy: Policy | None = None
    port: int = DEFAULT_PORT
    allow_unencrypted_traffic: bool = False
    account_sid: str = ""
    auth_token: str = ""
    location: tzinfo = timezone.utc
    public_host: str = ""
    page_size: int = DEFAULT_PAGE_SIZE
    max_resource_age: timedelta = DEFAULT_MAX_RESOURCE_AGE
    show_media_by_default: bool = True
    mailto: str = ""
    error_reporter: str = ""
    error_reporter_token: str = ""
    auth_scheme: str = ""
    basic_auth_users: dict[str, str] = field(default_factory=dict)
    google_client_id: str = ""
    google_client_secret: str = ""
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    media_url_ttl: timedelta = DEFAULT_MEDIA_URL_TTL

    @property
    def base_url(self) -> str:
        scheme = "http" if self.allow_unencrypted_traffic else "https"
        return f"{scheme}://{self.public_host}"


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    overrides = dict(raw)
    secret_key = env_str("LOGVIEW_SECRET_KEY")
    if secret_key:
        overrides["secret_key"] = secret_key
    public_host = env_str("LOGVIEW_PUBLIC_HOST")
    if public_host:
        overrides["public_host"] = public_host
    if env_str("LOGVIEW_PORT"):
        overrides["port"] = env_int("LOGVIEW_PORT", DEFAULT_PORT, minimum=1, maximum=65535)
    return overrides


def read_config_file(path: str | Path = DEFAULT_CONFIG_PATH, *, explicit: bool = False) -> FileConfig:
    """Read and validate the YAML config file.

    A missing default file falls back to a local-only configuration; a
    missing file the operator named is an error.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        if explicit:
            raise ConfigurationError(f"Couldn't find config file {config_path}") from exc
        LOGGER.warning("Couldn't find config file, defaulting to localhost:%d", DEFAULT_PORT)
        return FileConfig.model_validate(_apply_env_overrides({"realm": "local"}))
    except OSError as exc:
        raise ConfigurationError(f"Couldn't read config file {config_path}: {exc}") from exc

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Couldn't parse config file: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError("Config file must contain a mapping of settings")

    try:
        return FileConfig.model_validate(_apply_env_overrides(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"Couldn't parse config file: {exc}") from exc


def _resolve_location(name: str) -> tzinfo:
    if not name:
        LOGGER.info("No timezone provided, defaulting to UTC")
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Couldn't find timezone {name}") from exc


def _resolve_mailto(value: str) -> str:
    if not value:
        return ""
    _, address = parseaddr(value)
    if "@" not in address:
        raise ConfigurationError(f"Couldn't parse email address {value!r}")
    return address


def _resolve_policy(config: FileConfig, base_dir: Path) -> Policy | None:
    if config.policy_file and config.policy is not None:
        raise ConfigurationError("Set either policy or policy_file, not both")
    if config.policy_file:
        policy_path = Path(config.policy_file).expanduser()
        if not policy_path.is_absolute():
            policy_path = base_dir / policy_path
        return load_policy_file(policy_path)
    if config.policy is not None:
        return load_policy(config.policy)
    return None


def build_settings(config: FileConfig, *, base_dir: Path | None = None) -> Settings:
    """Turn a validated file config into immutable process settings.

    Every check here runs before the server starts; any failure raises
    ConfigurationError and the process must not serve traffic.
    """
    allow_http = config.realm == "local"

    users: dict[str, str] = {}
    if config.auth_scheme == "":
        LOGGER.warning("Disabling authentication")
    elif config.auth_scheme == "basic":
        if not config.basic_auth_user or not config.basic_auth_password:
            raise ConfigurationError("Cannot run without Basic Auth, set a basic_auth_user and basic_auth_password")
        users[config.basic_auth_user] = config.basic_auth_password
    elif config.auth_scheme == "google":
        if not config.google_client_id or not config.google_client_secret:
            raise ConfigurationError("Google auth requires google_client_id and google_client_secret")
        if not config.public_host:
            raise ConfigurationError("Google auth requires public_host for the callback URL")

    page_size = config.page_size or DEFAULT_PAGE_SIZE
    if page_size < 0 or page_size > MAX_PAGE_SIZE:
        raise ConfigurationError(f"Maximum allowable page size is {MAX_PAGE_SIZE}")

    policy = _resolve_policy(config, base_dir or Path.cwd())
    if policy is None:
        LOGGER.warning("No policy configured, every user can view every resource")

    return Settings(
        secret_key=get_secret_key(config.secret_key),
        policy=policy,
        port=config.port,
        allow_unencrypted_traffic=allow_http,
        account_sid=config.twilio_account_sid,
        auth_token=config.twilio_auth_token,
        location=_resolve_location(config.timezone),
        public_host=config.public_host,
        page_size=page_size,
        max_resource_age=parse_duration(config.max_resource_age) or DEFAULT_MAX_RESOURCE_AGE,
        show_media_by_default=True if config.show_media_by_default is None else config.show_media_by_default,
        mailto=_resolve_mailto(config.email_address),
        error_reporter=config.error_reporter,
        error_reporter_token=config.error_reporter_token,
        auth_scheme=config.auth_scheme,
        basic_auth_users=users,
        google_client_id=config.google_client_id,
        google_client_secret=config.google_client_secret,
        session_ttl=parse_duration(config.session_ttl) or DEFAULT_SESSION_TTL,
        media_url_ttl=parse_duration(config.media_url_ttl) or DEFAULT_MEDIA_URL_TTL,
    )


def load_settings(path: str | Path | None = None) -> Settings:
    explicit = path is not None
    config_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_PATH)
    config = read_config_file(config_path, explicit=explicit)
    return build_settings(config, base_dir=config_path.resolve().parent)
