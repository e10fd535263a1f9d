"""
Contract lifecycle state machine.

    draft -send-> sent -sign-> signed -pay-> paid -finalize-> completed

Any non-terminal contract can be cancelled by its contractor. Status never
regresses; completed and cancelled are terminal.
"""

import enum

from ...errors import precondition_failed, validation_failed
from ...models import Contract, ContractStatus, SignatureParty


class ContractAction(str, enum.Enum):
    SEND = "send"
    SIGN = "sign"
    PAY = "pay"
    FINALIZE = "finalize"
    CANCEL = "cancel"


TERMINAL_STATUSES = frozenset({ContractStatus.COMPLETED, ContractStatus.CANCELLED})

# Statuses in which contract terms may still be edited
EDITABLE_STATUSES = frozenset({ContractStatus.DRAFT, ContractStatus.SENT})

TRANSITIONS = {
    (ContractStatus.DRAFT, ContractAction.SEND): ContractStatus.SENT,
    (ContractStatus.SENT, ContractAction.SIGN): ContractStatus.SIGNED,
    (ContractStatus.SIGNED, ContractAction.PAY): ContractStatus.PAID,
    (ContractStatus.PAID, ContractAction.FINALIZE): ContractStatus.COMPLETED,
    (ContractStatus.DRAFT, ContractAction.CANCEL): ContractStatus.CANCELLED,
    (ContractStatus.SENT, ContractAction.CANCEL): ContractStatus.CANCELLED,
    (ContractStatus.SIGNED, ContractAction.CANCEL): ContractStatus.CANCELLED,
    (ContractStatus.PAID, ContractAction.CANCEL): ContractStatus.CANCELLED,
}

_ORDER = {
    ContractStatus.DRAFT: 0,
    ContractStatus.SENT: 1,
    ContractStatus.SIGNED: 2,
    ContractStatus.PAID: 3,
    ContractStatus.COMPLETED: 4,
}


def _status(value) -> ContractStatus:
    return value if isinstance(value, ContractStatus) else ContractStatus(value)


def is_terminal(status) -> bool:
    return _status(status) in TERMINAL_STATUSES


def can_transition(current, action: ContractAction) -> bool:
    return (_status(current), ContractAction(action)) in TRANSITIONS


def next_status(current, action: ContractAction) -> ContractStatus:
    """Target status for an action, or PreconditionFailed if the edge does not exist"""
    current = _status(current)
    action = ContractAction(action)
    target = TRANSITIONS.get((current, action))
    if target is None:
        if current in TERMINAL_STATUSES:
            raise precondition_failed(f"Contract is {current.value} and can no longer change")
        raise precondition_failed(f"Cannot {action.value} a contract that is {current.value}")
    return target


def has_reached(status, milestone: ContractStatus) -> bool:
    """True when status is at or past milestone on the main path"""
    status = _status(status)
    if status == ContractStatus.CANCELLED:
        return False
    return _ORDER[status] >= _ORDER[milestone]


def required_parties(contract: Contract) -> set[SignatureParty]:
    parties = {SignatureParty.CLIENT}
    if contract.requires_contractor_signature:
        parties.add(SignatureParty.CONTRACTOR)
    return parties


def assert_mutable(contract: Contract) -> None:
    """Reject edits to terms once signing has started or the contract is terminal"""
    status = _status(contract.status)
    if status in TERMINAL_STATUSES:
        raise precondition_failed(f"Contract is {status.value} and can no longer be edited")
    if status not in EDITABLE_STATUSES:
        raise precondition_failed(f"Contract terms cannot be edited once {status.value}")
    if contract.signatures:
        raise precondition_failed("Contract terms cannot be edited after a signature was recorded")


def validate_amounts(deposit_amount: float, total_amount: float) -> None:
    if deposit_amount < 0:
        raise validation_failed("Deposit amount cannot be negative", "depositAmount")
    if total_amount < 0:
        raise validation_failed("Total amount cannot be negative", "totalAmount")
    if deposit_amount > total_amount:
        raise validation_failed("Deposit cannot exceed the total amount", "depositAmount")
