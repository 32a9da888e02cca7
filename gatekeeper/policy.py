"""Access-control policy: groups of principals sharing a capability set.

A policy document is an ordered list of groups::

    - name: admins
      users: [alice@example.com]
    - name: support
      default: true
      permissions:
        can_view_calls: true
        can_view_messages: true

The list may also be nested under a single ``policy:`` key. A group without a
``permissions`` mapping is granted every capability.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .age import DEFAULT_MAX_RESOURCE_AGE, parse_duration
from .capabilities import Capabilities, all_capabilities, normalize_capabilities
from .errors import ConfigurationError, LookupNotFound, PermissionDenied

LOGGER = logging.getLogger(__name__)


class GroupDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    default: bool = False
    users: list[str] = Field(default_factory=list)
    permissions: dict[str, bool] | None = None
    max_resource_age: Any = None

    @field_validator("users", mode="before")
    @classmethod
    def _users_may_be_null(cls, value: Any) -> Any:
        return [] if value is None else value


class PolicyDocument(BaseModel):
    policy: list[GroupDocument] | None = None


_GROUP_LIST = TypeAdapter(list[GroupDocument])


@dataclass(frozen=True)
class Group:
    name: str
    default: bool = False
    users: tuple[str, ...] = ()
    capabilities: Capabilities = field(default_factory=all_capabilities)
    max_resource_age: timedelta = timedelta(0)


@dataclass(frozen=True)
class Policy:
    groups: tuple[Group, ...] = ()

    def __iter__(self) -> Iterator[Group]:
        return iter(self.groups)

    def __len__(self) -> int:
        return len(self.groups)

    @property
    def default_group(self) -> Group | None:
        for group in self.groups:
            if group.default:
                return group
        return None

    @classmethod
    def open(cls) -> Policy:
        """A policy that lets every principal see everything."""
        return cls(groups=(Group(name="everyone", default=True),))


@dataclass(frozen=True)
class Permission:
    capabilities: Capabilities
    max_resource_age: timedelta

    def can(self, capability: str) -> bool:
        return bool(self.capabilities.get(capability, False))

    def require(self, capability: str) -> None:
        if not self.can(capability):
            raise PermissionDenied()


@dataclass(frozen=True)
class User:
    id: str
    permission: Permission

    def can(self, capability: str) -> bool:
        return self.permission.can(capability)

    def require(self, capability: str) -> None:
        self.permission.require(capability)


def _parse_groups(raw: Any) -> list[GroupDocument]:
    # Try the ``policy:`` wrapper first, then a bare list of groups.
    if isinstance(raw, Mapping):
        try:
            wrapped = PolicyDocument.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid policy: {exc}") from exc
        if wrapped.policy:
            return wrapped.policy
    try:
        return _GROUP_LIST.validate_python(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid policy: {exc}") from exc


def _to_group(document: GroupDocument) -> Group:
    return Group(
        name=(document.name or "").strip(),
        default=document.default,
        users=tuple(document.users),
        capabilities=normalize_capabilities(document.permissions),
        max_resource_age=parse_duration(document.max_resource_age or 0),
    )


def parse_policy(raw: Any) -> Policy:
    """Parse a policy document without validating it."""
    if raw is None:
        return Policy()
    return Policy(groups=tuple(_to_group(document) for document in _parse_groups(raw)))


def validate_policy(policy: Policy | None) -> None:
    if policy is None:
        return
    users: set[str] = set()
    names: set[str] = set()
    default_count = 0
    for group in policy:
        if not group.name:
            raise ConfigurationError("Group has no name, define a group name")
        if group.name in names:
            raise ConfigurationError(f"Group name {group.name} appears twice in the list")
        names.add(group.name)
        if group.default:
            default_count += 1
            if default_count > 1:
                raise ConfigurationError("More than one group marked as default")
        for user in group.users:
            if user in users:
                raise ConfigurationError(f"User {user} appears twice in the list")
            users.add(user)


def load_policy(raw: Any) -> Policy:
    policy = parse_policy(raw)
    validate_policy(policy)
    return policy


def load_policy_file(path: str | Path) -> Policy:
    policy_path = Path(path)
    try:
        raw = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Couldn't read policy file {policy_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Couldn't parse policy file {policy_path}: {exc}") from exc
    LOGGER.info("Loaded policy from %s", policy_path)
    return load_policy(raw)


class PermissionEvaluator:
    """Resolves principal ids against a validated policy.

    ``default_max_resource_age`` applies to every group that doesn't set its
    own ceiling.
    """

    def __init__(self, policy: Policy | None, default_max_resource_age: timedelta = DEFAULT_MAX_RESOURCE_AGE) -> None:
        if default_max_resource_age <= timedelta(0):
            raise ConfigurationError("Default max resource age must be positive")
        self._policy = policy or Policy()
        self._default_max_resource_age = default_max_resource_age

    @property
    def policy(self) -> Policy:
        return self._policy

    def permission_for(self, group: Group) -> Permission:
        ceiling = group.max_resource_age or self._default_max_resource_age
        return Permission(capabilities=group.capabilities, max_resource_age=ceiling)

    def lookup(self, principal_id: str) -> tuple[User, bool]:
        """Return the user for ``principal_id`` and whether it was listed by id.

        Falls back to the default group, and raises LookupNotFound when there
        is none. Assumes the policy was validated.
        """
        default_group: Group | None = None
        for group in self._policy:
            if principal_id in group.users:
                return User(id=principal_id, permission=self.permission_for(group)), True
            if group.default and default_group is None:
                default_group = group
        if default_group is not None:
            return User(id=principal_id, permission=self.permission_for(default_group)), False
        raise LookupNotFound(f"User {principal_id} not found in the policy, and no default configured")

    def users(self) -> dict[str, User]:
        result: dict[str, User] = {}
        for group in self._policy:
            permission = self.permission_for(group)
            for user in group.users:
                result[user] = User(id=user, permission=permission)
        return result
