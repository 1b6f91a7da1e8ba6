# SQLModel definitions, imported here to ensure metadata is populated.
from .base import IdMixin, TimestampMixin  # noqa: F401
from .organization import Member, Organization  # noqa: F401
from .rbac import Permission, Role, RolePermission  # noqa: F401
from .session import UserSession  # noqa: F401
from .user import Account, User  # noqa: F401
