"""
Permission System (RBAC)

Role checks on top of the hierarchy SUPER_USER > ADMIN >
HEALTHCARE_PROVIDER > STAFF. Tenant boundaries are not checked here;
both users are always loaded through the same TenantScope.
"""
from carexps.models.user import User, UserRole, ROLE_HIERARCHY
from carexps.core.exceptions import PermissionDenied


def require_role(user: User, required_role: UserRole) -> None:
    """Raise PermissionDenied unless user has required_role or higher."""
    if not user.has_permission(required_role):
        raise PermissionDenied(
            detail=f"This action requires {required_role.value} role or higher"
        )


def require_admin(user: User) -> None:
    """Shorthand for requiring admin role."""
    require_role(user, UserRole.ADMIN)


def is_admin(user: User) -> bool:
    return user.has_permission(UserRole.ADMIN)


def can_modify_user(current_user: User, target_user: User) -> bool:
    """
    Admins can modify users at or below their own level; everyone can
    modify themselves.
    """
    if current_user.id == target_user.id:
        return True
    if not is_admin(current_user):
        return False
    return ROLE_HIERARCHY[current_user.role] >= ROLE_HIERARCHY[target_user.role]


def can_assign_role(current_user: User, role: UserRole) -> bool:
    """Admins cannot grant a role above their own."""
    return is_admin(current_user) and ROLE_HIERARCHY[current_user.role] >= ROLE_HIERARCHY[role]


def can_modify_note(current_user: User, note_author_id) -> bool:
    """Authors edit their own notes; admins edit any note in the tenant."""
    if is_admin(current_user):
        return True
    return current_user.id == note_author_id
