"""
Middleware components for the event series backend.

This module provides:
- TenantContext: Dataclass representing the current tenant context
- get_tenant_context: FastAPI dependency for extracting tenant context from requests
"""

from backend.src.middleware.tenant import TenantContext, get_tenant_context

__all__ = [
    "TenantContext",
    "get_tenant_context",
]
