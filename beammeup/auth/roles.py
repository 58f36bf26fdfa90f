"""Role-based capability check shared by every guarded route."""

from typing import Iterable, Union

from beammeup.users.models import Role

# Capability sets used by the routes
EVERYONE = (Role.OWNER, Role.ADMIN, Role.OPERATOR, Role.VIEWER)
MANAGERS = (Role.OWNER, Role.ADMIN)
OPERATORS = (Role.OWNER, Role.ADMIN, Role.OPERATOR)
OWNERS = (Role.OWNER,)


def has_capability(role: Union[str, Role, None], required: Iterable[Role]) -> bool:
    """True if the caller's role is one of the required roles."""
    if role is None:
        return False
    try:
        caller = Role(role)
    except ValueError:
        return False
    return caller in tuple(required)
