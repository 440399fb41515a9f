"""
User Management Endpoints

CRUD operations for users within the current tenant, lockout clearing
and per-user settings.

RBAC:
- List users / get user: any verified user
- Create user / delete user / clear lockout: admin
- Update user: admin or self (role changes admin only)
- Settings: the user themselves
"""
from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from carexps.models.user import User, UserRole
from carexps.schemas.user import (
    LockoutClearResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserSettingsResponse,
    UserSettingsUpdate,
    UserUpdate,
)
from carexps.api.deps import (
    get_auth_service,
    get_user_service,
    get_verified_user,
    require_admin,
)
from carexps.services.auth import AuthService
from carexps.services.users import UserService
from carexps.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    current_user: User = Depends(get_verified_user),
    users: UserService = Depends(get_user_service)
):
    """List users in the current tenant, paginated."""
    items, total = users.list_users(page, page_size, role, is_active)
    return UserListResponse(users=items, total=total, page=page, page_size=page_size)


# Declared before /{user_id} so "me" is not taken for an id
@router.get("/me/settings", response_model=UserSettingsResponse)
async def get_my_settings(
    current_user: User = Depends(get_verified_user),
    users: UserService = Depends(get_user_service)
):
    return users.get_settings(current_user)


@router.patch("/me/settings", response_model=UserSettingsResponse)
async def update_my_settings(
    changes: UserSettingsUpdate,
    current_user: User = Depends(get_verified_user),
    users: UserService = Depends(get_user_service)
):
    return users.update_settings(current_user, changes.model_dump(exclude_unset=True))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: User = Depends(get_verified_user),
    users: UserService = Depends(get_user_service)
):
    """Users of other tenants are reported as not found."""
    return users.get_user(user_id)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    current_user: User = Depends(require_admin),
    users: UserService = Depends(get_user_service)
):
    return users.create_user(
        current_user,
        user_data.email,
        user_data.password,
        user_data.full_name,
        user_data.role
    )


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(get_verified_user),
    users: UserService = Depends(get_user_service)
):
    return users.update_user(current_user, user_id, user_data.model_dump(exclude_unset=True))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    users: UserService = Depends(get_user_service)
):
    users.delete_user(current_user, user_id)
    return None


@router.post("/{user_id}/unlock", response_model=LockoutClearResponse)
async def clear_lockout(
    user_id: str,
    current_user: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
    auth: AuthService = Depends(get_auth_service)
):
    """Admin: clear a password lockout before it expires."""
    target = users.get_user(user_id)
    cleared = auth.clear_lockout(current_user, target)
    return LockoutClearResponse(user_id=target.id, cleared_attempts=cleared)
