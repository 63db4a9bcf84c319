# backend/app/api/dependencies/auth.py
"""
Authentication dependencies.

Identity is owned by the upstream gateway, which forwards the caller as
two headers:

- X-Actor-Id: the authenticated user's id
- X-Actor-Role: student | tutor | admin

The engine trusts these values and only enforces ownership rules.
"""

import logging
from typing import Optional

from fastapi import Header

from ...core.enums import RoleName
from ...core.exceptions import UnauthorizedException
from ...principal import ActorPrincipal

logger = logging.getLogger(__name__)

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


def get_current_actor(
    x_actor_id: Optional[str] = Header(None, alias=ACTOR_ID_HEADER),
    x_actor_role: Optional[str] = Header(None, alias=ACTOR_ROLE_HEADER),
) -> ActorPrincipal:
    """
    Resolve the calling actor from gateway headers.

    Raises:
        UnauthorizedException: Missing id or role, or an unknown role
    """
    actor_id = (x_actor_id or "").strip()
    role_value = (x_actor_role or "").strip().lower()
    if not actor_id or not role_value:
        raise UnauthorizedException()
    try:
        role = RoleName(role_value)
    except ValueError:
        logger.warning("unknown_actor_role", extra={"actor_id": actor_id, "role": role_value})
        raise UnauthorizedException("Unknown actor role", details={"role": role_value})
    return ActorPrincipal(actor_id=actor_id, role=role)

