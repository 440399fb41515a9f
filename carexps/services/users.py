"""
User Management Service

Tenant-scoped user CRUD and per-user settings.

RBAC:
- List / get: any authenticated user
- Create / delete: admin
- Update: admin (users at or below their level) or self
- Role changes: admins only, never above their own role
- The last active admin cannot be deleted, deactivated or demoted
"""
from typing import Any, Dict, List, Optional, Tuple
import logging

from carexps.core.exceptions import InvalidInputError, PermissionDenied, UserNotFoundError
from carexps.core.permissions import can_assign_role, can_modify_user, require_admin, is_admin
from carexps.core.tenancy import TenantScope
from carexps.models.audit import AuditAction, AuditOutcome, ResourceType
from carexps.models.settings import UserSettings
from carexps.models.user import User, UserRole
from carexps.services.audit import AuditLogger
from carexps.services.auth import AuthService, normalize_email

logger = logging.getLogger(__name__)

ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_USER)


def _drop_nulls(changes: Dict[str, Any]) -> Dict[str, Any]:
    """An explicit null in a PATCH body leaves the field unchanged."""
    return {field: value for field, value in changes.items() if value is not None}


class UserService:

    def __init__(self, scope: TenantScope, audit: AuditLogger, auth: AuthService):
        self.scope = scope
        self.audit = audit
        self.auth = auth

    def list_users(
        self,
        page: int = 1,
        page_size: int = 20,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None
    ) -> Tuple[List[User], int]:
        query = self.scope.query(User)
        if role:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active == is_active)

        total = query.count()
        offset = (page - 1) * page_size
        users = query.order_by(User.created_at.asc()).offset(offset).limit(page_size).all()
        return users, total

    def get_user(self, user_id: str) -> User:
        user = self.scope.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)
        return user

    def _active_admin_count(self) -> int:
        return self.scope.query(User).filter(
            User.role.in_(ADMIN_ROLES),
            User.is_active == True  # noqa: E712
        ).count()

    def _is_last_admin(self, user: User) -> bool:
        return user.role in ADMIN_ROLES and user.is_active and self._active_admin_count() <= 1

    def create_user(
        self,
        actor: User,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        role: UserRole = UserRole.STAFF
    ) -> User:
        require_admin(actor)
        if not can_assign_role(actor, role):
            raise PermissionDenied(f"Cannot create a user with role {role.value}")

        user = self.auth.create_user(email, password, full_name, role)
        self.audit.log(AuditAction.CREATE, ResourceType.USER, user_id=actor.id, resource_id=user.id,
                       details={"role": role.value})
        self.scope.commit()
        self.scope.refresh(user)

        logger.info(f"User created: {user.id} by {actor.id}")
        return user

    def update_user(self, actor: User, user_id: str, changes: Dict[str, Any]) -> User:
        user = self.get_user(user_id)
        changes = _drop_nulls(changes)

        if not can_modify_user(actor, user):
            raise PermissionDenied("Not authorized to modify this user")

        new_role = changes.get("role")
        if new_role is not None and new_role != user.role:
            if not can_assign_role(actor, new_role):
                raise PermissionDenied("Only admins can change user roles, and not above their own")
            if new_role not in ADMIN_ROLES and self._is_last_admin(user):
                raise InvalidInputError("Cannot demote the last admin")

        if changes.get("is_active") is False:
            if not is_admin(actor):
                raise PermissionDenied("Only admins can deactivate users")
            if self._is_last_admin(user):
                raise InvalidInputError("Cannot deactivate the last admin")

        if "email" in changes and changes["email"] is not None:
            email = normalize_email(changes["email"])
            existing = self.auth.find_user(email)
            if existing and existing.id != user.id:
                raise InvalidInputError("User with this email already exists")
            changes["email"] = email

        for field, value in changes.items():
            setattr(user, field, value)

        self.audit.log(AuditAction.UPDATE, ResourceType.USER, user_id=actor.id, resource_id=user.id,
                       details={"fields": sorted(changes.keys())})
        self.scope.commit()
        self.scope.refresh(user)

        logger.info(f"User updated: {user.id} by {actor.id}")
        return user

    def delete_user(self, actor: User, user_id: str) -> None:
        require_admin(actor)
        user = self.get_user(user_id)

        if user.id == actor.id:
            raise InvalidInputError("Cannot delete your own account")
        if not can_modify_user(actor, user):
            raise PermissionDenied("Cannot delete a user with a higher role")
        if self._is_last_admin(user):
            raise InvalidInputError("Cannot delete the last admin")

        self.scope.delete(user)
        self.audit.log(AuditAction.DELETE, ResourceType.USER, AuditOutcome.SUCCESS,
                       user_id=actor.id, resource_id=user_id)
        self.scope.commit()

        logger.info(f"User deleted: {user_id} by {actor.id}")

    def get_settings(self, user: User) -> UserSettings:
        """Created with defaults on first read."""
        settings = self.scope.get(UserSettings, user.id)
        if settings is None:
            settings = UserSettings(user_id=user.id, notifications={}, preferences={})
            self.scope.add(settings)
            self.scope.commit()
            self.scope.refresh(settings)
        return settings

    def update_settings(self, user: User, changes: Dict[str, Any]) -> UserSettings:
        settings = self.get_settings(user)
        for field, value in _drop_nulls(changes).items():
            setattr(settings, field, value)
        self.scope.commit()
        self.scope.refresh(settings)
        return settings
