"""PermissionGate: decides whether a caller may use a tool or resource.

Pure logic, no I/O.  Any missing permission denies the whole request; there
are no partial grants.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from filebridge.runtime.models import AccessPolicy, SecurityContext

T = TypeVar("T")


class PermissionGate:
    """Evaluate an :class:`AccessPolicy` against a :class:`SecurityContext`."""

    def allow(self, context: SecurityContext, policy: AccessPolicy) -> bool:
        """Return ``True`` when *context* satisfies *policy*.

        Resolution order:
        1. ``requires_auth``: an anonymous caller (no ``user_id``) is denied.
        2. ``required_permissions``: must be a subset of the caller's permissions.
        """
        if policy.requires_auth and not context.user_id:
            return False

        required = policy.required_permissions
        return not required or required <= context.permissions

    def filter(
        self,
        context: SecurityContext,
        items: Iterable[T],
        policy_of: Callable[[T], AccessPolicy],
    ) -> list[T]:
        """Keep the *items* whose policy allows *context*, preserving order."""
        return [item for item in items if self.allow(context, policy_of(item))]
