from fastapi import Header
from typing import Optional
from uuid import UUID

from ..database import get_db  # noqa: F401  (re-exported for routers)

# ============================================================================
# REQUEST CONTEXT - Tenant and actor are passed explicitly on every request
# ============================================================================

def get_company_id(
    x_company_id: UUID = Header(..., description="Company (tenant) the request acts for")
) -> UUID:
    return x_company_id

def get_user_id(
    x_user_id: Optional[UUID] = Header(None, description="User performing the action")
) -> Optional[UUID]:
    return x_user_id
