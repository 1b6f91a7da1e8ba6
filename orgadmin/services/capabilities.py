"""
Capability computation: read-only answer to "which actions may this actor
take on this target right now", for UI enablement.

Derived from the same rules as the target action policy but never raises for
a denied action: a denial is a False flag. A missing target is reported as
NotFound here, since nothing is being mutated.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orgadmin.core.exceptions import AdminError, NotFound
from orgadmin.services.policy import TARGET_NOT_FOUND, find_membership, get_target_role
from orgadmin_shared.schemas.common import PlatformRole
from orgadmin_shared.schemas.users import CapabilityActions, UserCapabilities

log = structlog.get_logger()


@dataclass
class CapabilityOutcome:
    """Result of evaluating one target inside a batch."""

    target_user_id: str
    capabilities: Optional[UserCapabilities] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.capabilities is not None


def derive_actions(
    *,
    is_self: bool,
    platform_role: PlatformRole,
    target_role: PlatformRole,
    is_target_in_active_org: bool,
) -> CapabilityActions:
    """Pure capability rules.

    Self-safe actions (update, set_password) are open to an admin on themselves
    and to a scoped actor inside their organization. The remaining six actions
    are never granted on oneself.
    """
    can_self_safe_action = is_self and (
        platform_role is PlatformRole.ADMIN or is_target_in_active_org
    )
    if is_self:
        can_mutate_non_self = False
    elif platform_role is PlatformRole.ADMIN:
        can_mutate_non_self = target_role is not PlatformRole.ADMIN
    else:
        can_mutate_non_self = target_role is PlatformRole.MEMBER and is_target_in_active_org

    self_safe = can_self_safe_action or can_mutate_non_self
    return CapabilityActions(
        update=self_safe,
        set_password=self_safe,
        set_role=can_mutate_non_self,
        ban=can_mutate_non_self,
        unban=can_mutate_non_self,
        remove=can_mutate_non_self,
        revoke_sessions=can_mutate_non_self,
        impersonate=can_mutate_non_self,
    )


async def get_user_capabilities(
    *,
    actor_user_id: str,
    target_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session: AsyncSession,
) -> UserCapabilities:
    target_role = await get_target_role(target_user_id, session)
    if target_role is None:
        raise NotFound(TARGET_NOT_FOUND)

    if platform_role is PlatformRole.ADMIN:
        in_active_org = True
    elif not active_organization_id:
        in_active_org = False
    else:
        membership = await find_membership(target_user_id, active_organization_id, session)
        in_active_org = membership is not None

    is_self = actor_user_id == target_user_id
    return UserCapabilities(
        target_user_id=target_user_id,
        target_role=target_role,
        is_self=is_self,
        actions=derive_actions(
            is_self=is_self,
            platform_role=platform_role,
            target_role=target_role,
            is_target_in_active_org=in_active_org,
        ),
    )


async def _evaluate_one(
    target_user_id: str,
    *,
    actor_user_id: str,
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session_factory: async_sessionmaker,
) -> CapabilityOutcome:
    # A session cannot be shared between concurrent tasks.
    async with session_factory() as session:
        try:
            caps = await get_user_capabilities(
                actor_user_id=actor_user_id,
                target_user_id=target_user_id,
                platform_role=platform_role,
                active_organization_id=active_organization_id,
                session=session,
            )
        except (AdminError, SQLAlchemyError) as exc:
            return CapabilityOutcome(target_user_id=target_user_id, error=exc)
    return CapabilityOutcome(target_user_id=target_user_id, capabilities=caps)


async def get_batch_capabilities(
    *,
    actor_user_id: str,
    target_user_ids: list[str],
    platform_role: PlatformRole,
    active_organization_id: Optional[str],
    session_factory: async_sessionmaker,
) -> dict[str, UserCapabilities]:
    """Capabilities for many targets, evaluated concurrently.

    Targets that cannot be resolved are left out of the result: an absent key
    means "unresolvable", a present all-False entry means "denied".
    """
    unique_ids = list(dict.fromkeys(target_user_ids))
    if not unique_ids:
        return {}

    outcomes = await asyncio.gather(
        *(
            _evaluate_one(
                target_id,
                actor_user_id=actor_user_id,
                platform_role=platform_role,
                active_organization_id=active_organization_id,
                session_factory=session_factory,
            )
            for target_id in unique_ids
        )
    )

    result: dict[str, UserCapabilities] = {}
    for outcome in outcomes:
        if outcome.ok:
            result[outcome.target_user_id] = outcome.capabilities
        else:
            log.debug(
                "capabilities.target_omitted",
                target_user_id=outcome.target_user_id,
                error=str(outcome.error),
            )
    return result
