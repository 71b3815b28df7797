"""
Discord Permissions Module

Decides whether a Discord user may issue remote-console commands.

IMPORTANT CONSTRAINTS:
- This module MUST NOT register Discord commands
- This module MUST NOT perform Discord API calls directly
- Member role ids are resolved by the caller and passed in
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence


class PermissionResult:
    """
    Structured permission check result.
    """

    def __init__(
        self,
        allowed: bool,
        *,
        reason: Optional[str] = None,
    ):
        self.allowed = allowed
        self.reason = reason

    def __bool__(self) -> bool:
        return self.allowed

class RconPermissionResolver:
    """
    Allow-list policy for RCON access.

    Both restrictions apply when configured:
    - the user id must be in allowed_user_ids (if non-empty)
    - the member must hold allowed_role_id (if set)
    With neither configured, anyone in the channel may use RCON.
    """

    def __init__(
        self,
        *,
        allowed_user_ids: Sequence[int] = (),
        allowed_role_id: Optional[int] = None,
    ):
        self._allowed_user_ids = frozenset(allowed_user_ids)
        self._allowed_role_id = allowed_role_id

    @property
    def requires_role(self) -> bool:
        return self._allowed_role_id is not None

    def check_user(self, user_id: int) -> PermissionResult:
        if self._allowed_user_ids and user_id not in self._allowed_user_ids:
            return PermissionResult(False, reason="user_not_allowed")
        return PermissionResult(True)

    def check_role(
        self,
        user_id: int,
        role_ids: Optional[Iterable[int]],
    ) -> PermissionResult:
        """
        role_ids of None means the member could not be resolved.
        """
        if self._allowed_role_id is None:
            return PermissionResult(True)
        if role_ids is None or self._allowed_role_id not in set(role_ids):
            return PermissionResult(False, reason="missing_role")
        return PermissionResult(True)
