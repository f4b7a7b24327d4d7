"""
Tenant context dependency for multi-tenancy support.

Provides:
- TenantContext: Dataclass containing tenant identification info
- get_tenant_context: FastAPI dependency to extract tenant context from requests

Authentication is performed upstream (gateway or auth service); it forwards
the resolved identity in the X-Team-Id and X-User-Id headers. All
tenant-scoped service operations use the team_id from TenantContext to
filter data.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

# Identifiers are stored in String(64) columns
MAX_IDENTIFIER_LENGTH = 64


@dataclass
class TenantContext:
    """
    Represents the current tenant context for a request.

    Attributes:
        team_id: Tenant identifier used to scope every query
        user_id: Identifier of the acting user

    Usage:
        @router.get("/items")
        async def list_items(
            ctx: TenantContext = Depends(get_tenant_context)
        ):
            items = service.list_items(team_id=ctx.team_id)
            return items
    """

    team_id: str
    user_id: str

    def __post_init__(self):
        """Validate required fields."""
        if not self.team_id or not self.user_id:
            raise ValueError("team_id and user_id are required")


def _clean_identifier(value: Optional[str], header: str) -> str:
    value = (value or "").strip()
    if not value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {header} header",
        )
    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} must be at most {MAX_IDENTIFIER_LENGTH} characters",
        )
    return value


async def get_tenant_context(
    x_team_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> TenantContext:
    """
    FastAPI dependency to extract tenant context from the request headers.

    Args:
        x_team_id: X-Team-Id header
        x_user_id: X-User-Id header

    Returns:
        TenantContext for the forwarded identity

    Raises:
        HTTPException 401: If either header is missing
        HTTPException 400: If a header value is too long
    """
    team_id = _clean_identifier(x_team_id, "X-Team-Id")
    user_id = _clean_identifier(x_user_id, "X-User-Id")
    return TenantContext(team_id=team_id, user_id=user_id)
