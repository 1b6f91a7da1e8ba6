from enum import Enum
from typing import Optional
from pydantic import BaseModel

class PlatformRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"

# Highest privilege first
ALL_ROLE_NAMES: list[str] = [
    PlatformRole.ADMIN.value,
    PlatformRole.MANAGER.value,
    PlatformRole.MEMBER.value,
]


def normalize_role(value: Optional[str]) -> PlatformRole:
    """Map a stored role value onto the closed role set.

    Anything unrecognised becomes MEMBER so a corrupt or legacy value can never
    grant the protection of a higher tier.
    """
    try:
        return PlatformRole(value)
    except ValueError:
        return PlatformRole.MEMBER

class SuccessResponse(BaseModel):
    success: bool = True
