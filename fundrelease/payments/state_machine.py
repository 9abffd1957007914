# fundrelease/payments/state_machine.py
from __future__ import annotations

from fundrelease.payments.model import TransferStatus


class InvalidTransition(Exception):
    pass


ALLOWED = {
    TransferStatus.PENDING: {TransferStatus.COMPLETED, TransferStatus.FAILED},
    TransferStatus.COMPLETED: {TransferStatus.PAID_OUT, TransferStatus.FAILED},
    TransferStatus.PAID_OUT: set(),
    TransferStatus.FAILED: set(),
}

# Manual operator reset only; schedulers never take these edges.
OPERATOR_RESETS = {
    TransferStatus.FAILED: {TransferStatus.PENDING, TransferStatus.COMPLETED},
}


def assert_transition(old: TransferStatus, new: TransferStatus) -> None:
    if new not in ALLOWED.get(TransferStatus(old), set()):
        raise InvalidTransition(f"Illegal payment transition: {TransferStatus(old).value} -> {TransferStatus(new).value}")


def assert_operator_reset(old: TransferStatus, new: TransferStatus) -> None:
    if new not in OPERATOR_RESETS.get(TransferStatus(old), set()):
        raise InvalidTransition(f"Illegal operator reset: {TransferStatus(old).value} -> {TransferStatus(new).value}")


def assert_processor_ref_invariant(new_status: TransferStatus, processor_ref: str | None) -> None:
    """
    Invariant: COMPLETED needs the processor transfer id, PAID_OUT the payout id.
    """
    if new_status in (TransferStatus.COMPLETED, TransferStatus.PAID_OUT) and not processor_ref:
        raise ValueError(f"Invariant violation: status={TransferStatus(new_status).value} requires processor_ref")


def reset_target(transfer_id: str | None) -> TransferStatus:
    # A record that already has a transfer only needs its payout retried.
    return TransferStatus.COMPLETED if transfer_id else TransferStatus.PENDING
