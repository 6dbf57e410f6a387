"""
Role based access control.

Each role maps to a frozen set of permission tags. The mapping is built once at
startup (defaults, optionally overridden from a JSON file) and passed to the
pure query functions below; there is no module-level mutable state.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

RolePermissions = Mapping[str, frozenset[str]]


class Permission:
    PATIENTS_VIEW = "patients:view"
    PATIENTS_CREATE = "patients:create"
    PATIENTS_EDIT = "patients:edit"
    PATIENTS_DELETE = "patients:delete"
    PATIENTS_EXPORT = "patients:export"

    APPOINTMENTS_VIEW = "appointments:view"
    APPOINTMENTS_CREATE = "appointments:create"
    APPOINTMENTS_EDIT = "appointments:edit"
    APPOINTMENTS_DELETE = "appointments:delete"
    APPOINTMENTS_VIEW_ALL = "appointments:view_all"

    SERVICES_VIEW = "services:view"
    SERVICES_CREATE = "services:create"
    SERVICES_EDIT = "services:edit"
    SERVICES_DELETE = "services:delete"
    SERVICES_MANAGE_PRICING = "services:manage_pricing"

    PRODUCTS_VIEW = "products:view"
    PRODUCTS_MANAGE_INVENTORY = "products:manage_inventory"
    PRODUCTS_VIEW_COSTS = "products:view_costs"

    INVOICES_VIEW = "invoices:view"
    INVOICES_CREATE = "invoices:create"
    INVOICES_EDIT = "invoices:edit"
    INVOICES_SEND = "invoices:send"
    INVOICES_VIEW_ALL = "invoices:view_all"

    PAYMENTS_VIEW = "payments:view"
    PAYMENTS_PROCESS = "payments:process"
    PAYMENTS_REFUND = "payments:refund"

    USERS_VIEW = "users:view"
    USERS_CREATE = "users:create"
    USERS_EDIT = "users:edit"
    USERS_DELETE = "users:delete"
    USERS_MANAGE_ROLES = "users:manage_roles"

    ANALYTICS_VIEW = "analytics:view"
    ANALYTICS_FINANCIAL = "analytics:financial"
    ANALYTICS_EXPORT = "analytics:export"

    SYSTEM_CONFIG = "system:config"
    CLINIC_SETTINGS = "clinic:settings"

    @classmethod
    def all(cls) -> frozenset[str]:
        return frozenset(v for k, v in vars(cls).items() if k.isupper() and isinstance(v, str))


P = Permission

DEFAULT_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": Permission.all(),
    "dentist": frozenset({
        P.PATIENTS_VIEW, P.PATIENTS_CREATE, P.PATIENTS_EDIT, P.PATIENTS_EXPORT,
        P.APPOINTMENTS_VIEW, P.APPOINTMENTS_CREATE, P.APPOINTMENTS_EDIT, P.APPOINTMENTS_VIEW_ALL,
        P.SERVICES_VIEW, P.SERVICES_CREATE, P.SERVICES_EDIT, P.SERVICES_MANAGE_PRICING,
        P.PRODUCTS_VIEW, P.PRODUCTS_VIEW_COSTS,
        P.INVOICES_VIEW, P.INVOICES_CREATE, P.INVOICES_EDIT, P.INVOICES_SEND, P.INVOICES_VIEW_ALL,
        P.PAYMENTS_VIEW, P.PAYMENTS_PROCESS,
        P.ANALYTICS_VIEW, P.ANALYTICS_FINANCIAL, P.ANALYTICS_EXPORT,
    }),
    "assistant": frozenset({
        P.PATIENTS_VIEW, P.PATIENTS_CREATE, P.PATIENTS_EDIT,
        P.APPOINTMENTS_VIEW, P.APPOINTMENTS_CREATE, P.APPOINTMENTS_EDIT,
        P.SERVICES_VIEW,
        P.PRODUCTS_VIEW, P.PRODUCTS_MANAGE_INVENTORY,
        P.INVOICES_VIEW,
        P.ANALYTICS_VIEW,
    }),
    "receptionist": frozenset({
        P.PATIENTS_VIEW, P.PATIENTS_CREATE, P.PATIENTS_EDIT,
        P.APPOINTMENTS_VIEW, P.APPOINTMENTS_CREATE, P.APPOINTMENTS_EDIT, P.APPOINTMENTS_VIEW_ALL,
        P.SERVICES_VIEW,
        P.PRODUCTS_VIEW,
        P.INVOICES_VIEW, P.INVOICES_CREATE, P.INVOICES_SEND, P.INVOICES_VIEW_ALL,
        P.PAYMENTS_VIEW, P.PAYMENTS_PROCESS,
        P.ANALYTICS_VIEW,
    }),
    "staff": frozenset({
        P.PATIENTS_VIEW,
        P.APPOINTMENTS_VIEW,
        P.SERVICES_VIEW,
        P.PRODUCTS_VIEW,
    }),
}


def load_role_permissions(path: str | Path | None = None) -> dict[str, frozenset[str]]:
    """
    Defaults, with per-role overrides from a JSON object ``{"role": ["perm", ...]}``.
    A role listed in the file replaces its default set entirely.
    """
    mapping = dict(DEFAULT_ROLE_PERMISSIONS)
    if not path:
        return mapping

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a JSON object of role -> permission list")

    known = Permission.all()
    for role, perms in raw.items():
        if not isinstance(perms, list):
            raise ValueError(f"{path}: permissions for role '{role}' must be a list")
        unknown = sorted(set(perms) - known)
        if unknown:
            raise ValueError(f"{path}: unknown permissions for role '{role}': {', '.join(unknown)}")
        mapping[str(role)] = frozenset(perms)

    logger.info("Loaded role permissions from %s (%d roles overridden)", path, len(raw))
    return mapping


def permissions_for(mapping: RolePermissions, role: str | None) -> frozenset[str]:
    if not role:
        return frozenset()
    return mapping.get(role, frozenset())


def has_permission(mapping: RolePermissions, role: str | None, permission: str | None) -> bool:
    if not role or not permission:
        return False
    return permission in permissions_for(mapping, role)


def has_any_permission(mapping: RolePermissions, role: str | None, permissions: Iterable[str]) -> bool:
    granted = permissions_for(mapping, role)
    return any(p in granted for p in permissions)


def has_all_permissions(mapping: RolePermissions, role: str | None, permissions: Iterable[str]) -> bool:
    if not role:
        return False
    granted = permissions_for(mapping, role)
    return all(p in granted for p in permissions)
