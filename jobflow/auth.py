"""Authorization collaborator interface and a role-based default.

The engine only consumes ``has_capability``; role resolution lives here so
hosts can swap in their own provider.
"""

import enum
from dataclasses import dataclass
from typing import Protocol


class Capability(str, enum.Enum):
    EDIT_CLEARANCE = "edit_clearance"
    ISSUE_DELIVERY_NOTE = "issue_delivery_note"
    DELETE_DELIVERY_NOTE = "delete_delivery_note"
    REQUEST_PAYMENT = "request_payment"
    APPROVE_PAYMENT = "approve_payment"
    CONFIRM_CLEARANCE = "confirm_clearance"
    SETTLE_PAYMENT = "settle_payment"
    COMPLETE_JOB = "complete_job"


@dataclass(frozen=True)
class Actor:
    id: str
    name: str | None = None
    # May hold several comma-separated roles, e.g. "Accountant, Clearance Agent"
    role: str = ""

    @property
    def roles(self) -> list[str]:
        return [r.strip() for r in self.role.split(",") if r.strip()]

    @property
    def display_name(self) -> str:
        return self.name or self.id


class AuthorizationProvider(Protocol):
    def has_capability(self, actor: Actor, capability: Capability) -> bool: ...


_CLEARANCE = {
    Capability.EDIT_CLEARANCE,
    Capability.ISSUE_DELIVERY_NOTE,
    Capability.REQUEST_PAYMENT,
    Capability.CONFIRM_CLEARANCE,
}
_ACCOUNTS = {
    Capability.APPROVE_PAYMENT,
    Capability.SETTLE_PAYMENT,
    Capability.REQUEST_PAYMENT,
}

DEFAULT_ROLE_CAPABILITIES: dict[str, set[Capability]] = {
    "Administrator": set(Capability),
    "Administrator Assistant": set(Capability) - {Capability.DELETE_DELIVERY_NOTE},
    "Clearance Manager": _CLEARANCE | {Capability.DELETE_DELIVERY_NOTE, Capability.COMPLETE_JOB},
    "Clearance Manager Assistant": set(_CLEARANCE),
    "Clearance Agent": {Capability.EDIT_CLEARANCE, Capability.REQUEST_PAYMENT},
    "Accountant": _ACCOUNTS | {Capability.COMPLETE_JOB},
    "Accountant Assistant": {Capability.APPROVE_PAYMENT, Capability.REQUEST_PAYMENT},
}


class RoleAuthorizationProvider:
    """Grants the union of capabilities of every role an actor holds."""

    def __init__(self, role_capabilities: dict[str, set[Capability]] | None = None):
        source = role_capabilities if role_capabilities is not None else DEFAULT_ROLE_CAPABILITIES
        self.role_capabilities = {role.casefold(): set(caps) for role, caps in source.items()}

    def capabilities_for(self, actor: Actor) -> set[Capability]:
        granted: set[Capability] = set()
        for role in actor.roles:
            granted |= self.role_capabilities.get(role.casefold(), set())
        return granted

    def has_capability(self, actor: Actor, capability: Capability) -> bool:
        return capability in self.capabilities_for(actor)
