"""
Order status transitions.

AVAILABLE_MOVES is the single authority on which order statuses may follow
which, and which of those moves only an administrator may make. It is keyed
by OrderStatus and must list every status; adding a status without deciding
its moves fails at import time.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.core.exceptions import ImproperlyConfigured

from .models import OrderStatus


@dataclass(frozen=True)
class Move:
    admin: bool
    new_state: OrderStatus
    label: str


AVAILABLE_MOVES: dict[OrderStatus, tuple[Move, ...]] = {
    OrderStatus.REVIEWING: (
        Move(admin=True, new_state=OrderStatus.APPROVED, label='Approve order'),
    ),
    OrderStatus.APPROVED: (
        Move(admin=True, new_state=OrderStatus.KIT_SENT, label='Update to Kit Sent'),
        Move(admin=True, new_state=OrderStatus.REVIEWING, label='Return to Reviewing'),
    ),
    OrderStatus.KIT_SENT: (
        Move(admin=False, new_state=OrderStatus.KIT_ARRIVED, label='Mark as Kit Arrived'),
        Move(admin=True, new_state=OrderStatus.APPROVED, label='Return to Approved'),
    ),
    OrderStatus.KIT_ARRIVED: (
        Move(admin=True, new_state=OrderStatus.KIT_SENT, label='Return to Kit Sent'),
    ),
}

_missing = set(OrderStatus) - set(AVAILABLE_MOVES)
if _missing:
    raise ImproperlyConfigured(
        f"AVAILABLE_MOVES has no entry for: {sorted(s.value for s in _missing)}"
    )


def parse_status(value) -> OrderStatus | None:
    """Return the OrderStatus for a raw value, or None if it is not one."""
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def available_moves(current_status, is_admin: bool) -> list[Move]:
    """Moves the caller may make from current_status. Unknown status -> none."""
    status = parse_status(current_status)
    if status is None:
        return []
    return [m for m in AVAILABLE_MOVES[status] if is_admin or not m.admin]


def is_transition_allowed(current_status, requested_status, is_admin: bool) -> bool:
    """
    Admit a transition iff the table lists it under current_status and the
    entry's admin flag is satisfied by the caller.

    Customers never get admin-flagged moves. There are no self-transitions,
    and unknown statuses on either side are rejected.
    """
    requested = parse_status(requested_status)
    if requested is None:
        return False
    return any(m.new_state == requested for m in available_moves(current_status, is_admin))


def status_update_fields(new_status, now) -> dict:
    """Field values for a status write; entering kit-sent also stamps dispatched_at."""
    fields = {'status': OrderStatus(new_status).value}
    if fields['status'] == OrderStatus.KIT_SENT:
        fields['dispatched_at'] = now
    return fields
