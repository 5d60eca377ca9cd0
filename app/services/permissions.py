"""Single place where role, lock state and persistence decide what a user may do.

Routers and the dashboard state never compare role strings themselves; they
ask ``evaluate_capabilities`` for a capability set and check membership.
"""
from __future__ import annotations

from enum import Enum

from app.models import AdminStatus, UserRole


class Capability(str, Enum):
    VIEW = 'view'
    VIEW_DASHBOARD = 'view_dashboard'
    CREATE_DELIVERY = 'create_delivery'
    EDIT_DELIVERY = 'edit_delivery'
    EDIT_BASE_FIELDS = 'edit_base_fields'
    EDIT_ADMIN_STATUS = 'edit_admin_status'
    DELETE_DELIVERY = 'delete_delivery'
    EDIT_PENDENCY = 'edit_pendency'
    EDIT_DEMAND = 'edit_demand'
    IMPORT_DATA = 'import_data'
    MANAGE_BACKUP = 'manage_backup'
    MANAGE_USERS = 'manage_users'
    MANAGE_TECHNICIANS = 'manage_technicians'
    MANAGE_SETTINGS = 'manage_settings'


ADMIN_ONLY = frozenset(
    {
        Capability.EDIT_ADMIN_STATUS,
        Capability.DELETE_DELIVERY,
        Capability.IMPORT_DATA,
        Capability.MANAGE_BACKUP,
        Capability.MANAGE_USERS,
        Capability.MANAGE_TECHNICIANS,
        Capability.MANAGE_SETTINGS,
    }
)

# Capabilities that stop applying once the back office has closed a delivery.
LOCKABLE = frozenset({Capability.EDIT_DELIVERY, Capability.EDIT_BASE_FIELDS})

ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.ADMIN: frozenset(Capability),
    UserRole.EDITOR: frozenset(
        {
            Capability.VIEW,
            Capability.CREATE_DELIVERY,
            Capability.EDIT_DELIVERY,
            Capability.EDIT_BASE_FIELDS,
            Capability.EDIT_PENDENCY,
            Capability.EDIT_DEMAND,
        }
    ),
    UserRole.MANAGER: frozenset({Capability.VIEW, Capability.VIEW_DASHBOARD, Capability.EDIT_DEMAND}),
    UserRole.COMMERCIAL: frozenset({Capability.VIEW, Capability.EDIT_DEMAND}),
    UserRole.VIEWER: frozenset({Capability.VIEW}),
}


def is_locked(admin_status: AdminStatus | str | None) -> bool:
    if admin_status is None or admin_status == '':
        return False
    return AdminStatus(admin_status) != AdminStatus.OPEN


def evaluate_capabilities(
    role: UserRole | str | None,
    *,
    locked: bool = False,
    persisted: bool = True,
) -> frozenset[Capability]:
    """Return what ``role`` may do with one record.

    ``locked`` only matters for existing records; pass ``persisted=False``
    for a record that is still being created, which unlocks the invoice
    number and issue date and ignores the lock.
    """
    if role is None or role == '':
        return frozenset()
    try:
        resolved_role = UserRole(role)
    except ValueError:
        return frozenset()

    capabilities = set(ROLE_CAPABILITIES[resolved_role])
    if resolved_role == UserRole.ADMIN:
        if persisted:
            capabilities.discard(Capability.EDIT_BASE_FIELDS)
        return frozenset(capabilities)

    capabilities -= ADMIN_ONLY
    if persisted:
        capabilities.discard(Capability.EDIT_BASE_FIELDS)
        if locked:
            capabilities -= LOCKABLE
    return frozenset(capabilities)
