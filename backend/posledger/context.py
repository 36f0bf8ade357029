# Overview: Request context handed to the engine by the (external) auth layer.

from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationError


ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_CASHIER = "cashier"

VALID_ROLES = {ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER}

# Highest privilege: may edit past the tax-filing lock window.
PRIVILEGED_ROLES = {ROLE_SUPER_ADMIN}
# May lock/unlock documents and cancel locked documents.
ADMIN_ROLES = {ROLE_SUPER_ADMIN, ROLE_ADMIN}
# Front-line operators, restricted to the short edit window.
OPERATOR_ROLES = {ROLE_CASHIER}


@dataclass(frozen=True)
class ActorContext:
    """
    Authenticated request context.

    MULTI-TENANT: tenant_id scopes every read and write made on behalf of
    this actor. Nothing in the engine crosses tenant boundaries.
    """
    tenant_id: int
    actor_id: int
    actor_role: str

    def __post_init__(self):
        if not self.tenant_id:
            raise ValidationError("tenant_id is required")
        if self.actor_role not in VALID_ROLES:
            raise ValidationError(f"Unknown role: {self.actor_role}")

    @property
    def is_admin(self) -> bool:
        return self.actor_role in ADMIN_ROLES

    @property
    def is_privileged(self) -> bool:
        return self.actor_role in PRIVILEGED_ROLES

    @property
    def is_operator(self) -> bool:
        return self.actor_role in OPERATOR_ROLES
