# storefront/app_server/dependencies/admin.py
from __future__ import annotations

from starlette.requests import Request

from storefront.app_server.auth import AdminPolicy


async def require_admin(request: Request) -> str:
    policy: AdminPolicy = request.app.state.admin_policy
    user_id = policy.authorize(request)
    request.state.admin_user_id = user_id
    return user_id
