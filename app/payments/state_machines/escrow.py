"""
Escrow state machine for orders.

The whole order lifecycle is declared once in TRANSITIONS: which statuses
a trigger may fire from, where it leads, which capture tranche it pays
and what else must happen. Two consumers read the table:

- Order's django-fsm @transition methods take their ``source`` lists
  from it, so the model itself refuses undefined moves.
- plan_transition() turns (current escrow state, trigger) into a
  TransitionPlan that EscrowService executes. It has no I/O and raises
  PreconditionError for anything the table does not allow.

Capture tranches:

    | Trigger   | From                                      | Captures        |
    |-----------|-------------------------------------------|-----------------|
    | authorize | created                                   | accepted  10%   |
    | start     | accepted, requirements_submitted          | in_escrow 50%   |
    | deliver   | started, halfway_done, requested_revision | delivered 20%   |
    | approve   | delivered, requested_revision             | reviewed  20%   |

Replays are answered here too: a trigger whose tranche is already
captured is either a duplicate (order already moved on) or, in the
revision loop, a status-only move that captures nothing.

Usage:
    from payments.state_machines.escrow import EscrowState, Trigger, plan_transition

    plan = plan_transition(
        EscrowState(status=order.status, captured_stages=captured),
        Trigger.START,
    )
    if plan.duplicate:
        return
    if plan.capture_stage:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from django.db import models

from payments.exceptions import PreconditionError
from payments.state_machines.states import (
    TERMINAL_ORDER_STATUSES,
    ActorRole,
    CaptureStage,
    OrderStatus,
    PaymentMilestoneStage,
)


class Trigger(models.TextChoices):
    """Events that move an order through its lifecycle."""

    AUTHORIZE = "authorize", "Authorize"
    SUBMIT_REQUIREMENTS = "submit_requirements", "Submit Requirements"
    START = "start", "Start"
    MARK_HALFWAY = "mark_halfway", "Mark Halfway"
    DELIVER = "deliver", "Deliver"
    REQUEST_REVISION = "request_revision", "Request Revision"
    APPROVE = "approve", "Approve"
    RELEASE = "release", "Release"
    CANCEL = "cancel", "Cancel"
    DISPUTE = "dispute", "Dispute"


class SideEffect(Enum):
    CAPTURE = "capture"
    RELEASE_FUNDS = "release_funds"
    REFUND_CAPTURES = "refund_captures"
    CANCEL_AUTHORIZATION = "cancel_authorization"


@dataclass(frozen=True)
class OrderTransition:
    """
    One row of the transition table.

    Attributes:
        trigger: Event firing the transition
        sources: Statuses the trigger may fire from
        target: Status after the transition
        actor: Party allowed to fire it (None means buyer or seller)
        capture_stage: Tranche captured by this transition
        requires_captured: Tranche that must already be captured
        milestone_stage: Escrow stage recorded on the order afterwards
        side_effects: Money movements beyond the capture
        deadline_bound: Sources from which the delivery deadline must have passed
    """

    trigger: str
    sources: frozenset
    target: str
    actor: str | None
    capture_stage: str | None = None
    requires_captured: str | None = None
    milestone_stage: str | None = None
    side_effects: tuple = ()
    deadline_bound: frozenset = field(default_factory=frozenset)


_PRE_DELIVERY = frozenset(
    {
        OrderStatus.CREATED,
        OrderStatus.ACCEPTED,
        OrderStatus.REQUIREMENTS_SUBMITTED,
        OrderStatus.STARTED,
        OrderStatus.HALFWAY_DONE,
    }
)

_DISPUTABLE = frozenset(set(OrderStatus) - TERMINAL_ORDER_STATUSES - {OrderStatus.CREATED})


TRANSITIONS: dict[str, OrderTransition] = {
    Trigger.AUTHORIZE: OrderTransition(
        trigger=Trigger.AUTHORIZE,
        sources=frozenset({OrderStatus.CREATED}),
        target=OrderStatus.ACCEPTED,
        actor=ActorRole.SYSTEM,
        capture_stage=CaptureStage.ACCEPTED,
        milestone_stage=PaymentMilestoneStage.ACCEPTED,
        side_effects=(SideEffect.CAPTURE,),
    ),
    Trigger.SUBMIT_REQUIREMENTS: OrderTransition(
        trigger=Trigger.SUBMIT_REQUIREMENTS,
        sources=frozenset({OrderStatus.ACCEPTED}),
        target=OrderStatus.REQUIREMENTS_SUBMITTED,
        actor=ActorRole.BUYER,
    ),
    Trigger.START: OrderTransition(
        trigger=Trigger.START,
        sources=frozenset({OrderStatus.ACCEPTED, OrderStatus.REQUIREMENTS_SUBMITTED}),
        target=OrderStatus.STARTED,
        actor=ActorRole.SELLER,
        capture_stage=CaptureStage.IN_ESCROW,
        requires_captured=CaptureStage.ACCEPTED,
        milestone_stage=PaymentMilestoneStage.IN_ESCROW,
        side_effects=(SideEffect.CAPTURE,),
    ),
    Trigger.MARK_HALFWAY: OrderTransition(
        trigger=Trigger.MARK_HALFWAY,
        sources=frozenset({OrderStatus.STARTED}),
        target=OrderStatus.HALFWAY_DONE,
        actor=ActorRole.SELLER,
    ),
    Trigger.DELIVER: OrderTransition(
        trigger=Trigger.DELIVER,
        sources=frozenset(
            {OrderStatus.STARTED, OrderStatus.HALFWAY_DONE, OrderStatus.REQUESTED_REVISION}
        ),
        target=OrderStatus.DELIVERED,
        actor=ActorRole.SELLER,
        capture_stage=CaptureStage.DELIVERED,
        requires_captured=CaptureStage.IN_ESCROW,
        milestone_stage=PaymentMilestoneStage.DELIVERED,
        side_effects=(SideEffect.CAPTURE,),
    ),
    Trigger.REQUEST_REVISION: OrderTransition(
        trigger=Trigger.REQUEST_REVISION,
        sources=frozenset({OrderStatus.DELIVERED}),
        target=OrderStatus.REQUESTED_REVISION,
        actor=ActorRole.BUYER,
    ),
    Trigger.APPROVE: OrderTransition(
        trigger=Trigger.APPROVE,
        sources=frozenset({OrderStatus.DELIVERED, OrderStatus.REQUESTED_REVISION}),
        target=OrderStatus.WAITING_REVIEW,
        actor=ActorRole.BUYER,
        capture_stage=CaptureStage.REVIEWED,
        requires_captured=CaptureStage.DELIVERED,
        milestone_stage=PaymentMilestoneStage.REVIEWED,
        side_effects=(SideEffect.CAPTURE,),
    ),
    Trigger.RELEASE: OrderTransition(
        trigger=Trigger.RELEASE,
        sources=frozenset({OrderStatus.WAITING_REVIEW}),
        target=OrderStatus.COMPLETED,
        actor=ActorRole.SYSTEM,
        requires_captured=CaptureStage.REVIEWED,
        milestone_stage=PaymentMilestoneStage.COMPLETED,
        side_effects=(SideEffect.RELEASE_FUNDS,),
    ),
    Trigger.CANCEL: OrderTransition(
        trigger=Trigger.CANCEL,
        sources=_PRE_DELIVERY,
        target=OrderStatus.CANCELLED,
        actor=ActorRole.BUYER,
        milestone_stage=PaymentMilestoneStage.CANCELLED,
        deadline_bound=_PRE_DELIVERY - {OrderStatus.CREATED},
    ),
    Trigger.DISPUTE: OrderTransition(
        trigger=Trigger.DISPUTE,
        sources=_DISPUTABLE,
        target=OrderStatus.DISPUTED,
        actor=None,
    ),
}


# Progress shown to users per status. Statuses missing here leave
# progress unchanged.
STATUS_PROGRESS: dict[str, int] = {
    OrderStatus.CREATED: 0,
    OrderStatus.ACCEPTED: 20,
    OrderStatus.REQUIREMENTS_SUBMITTED: 25,
    OrderStatus.STARTED: 40,
    OrderStatus.HALFWAY_DONE: 60,
    OrderStatus.DELIVERED: 70,
    OrderStatus.REQUESTED_REVISION: 70,
    OrderStatus.WAITING_REVIEW: 90,
    OrderStatus.COMPLETED: 100,
}


def sources_for(trigger: str) -> list[str]:
    """Sorted source statuses for a trigger (django-fsm ``source`` argument)."""
    return sorted(TRANSITIONS[trigger].sources)


def next_progress(current: int, status: str) -> int:
    """Progress after entering ``status``; never decreases."""
    return max(current, STATUS_PROGRESS.get(status, current))


@dataclass(frozen=True)
class EscrowState:
    """
    Snapshot of the facts a transition decision depends on.

    Attributes:
        status: Current order status
        captured_stages: Tranches with a captured milestone row
        deadline_passed: Whether the delivery deadline is in the past
    """

    status: str
    captured_stages: frozenset = frozenset()
    deadline_passed: bool = False


@dataclass(frozen=True)
class TransitionPlan:
    """
    What executing a trigger against an EscrowState must do.

    A duplicate plan has no effects at all; the caller reports success
    without touching money or status.
    """

    trigger: str
    source: str
    target: str
    capture_stage: str | None = None
    milestone_stage: str | None = None
    side_effects: tuple = ()
    duplicate: bool = False

    @property
    def changes_status(self) -> bool:
        return not self.duplicate and self.source != self.target


def plan_transition(state: EscrowState, trigger: str) -> TransitionPlan:
    """
    Decide what firing ``trigger`` from ``state`` means.

    Raises:
        PreconditionError: The table does not allow the move
            (INVALID_ORDER_STATUS, MILESTONE_OUT_OF_ORDER, DEADLINE_NOT_PASSED)
    """
    rule = TRANSITIONS[trigger]

    if rule.capture_stage and rule.capture_stage in state.captured_stages:
        if state.status in rule.sources:
            # Tranche already paid (revision loop): move status only.
            return TransitionPlan(
                trigger=trigger,
                source=state.status,
                target=rule.target,
                side_effects=tuple(e for e in rule.side_effects if e is not SideEffect.CAPTURE),
            )
        return _duplicate(trigger, state)

    if state.status == rule.target:
        return _duplicate(trigger, state)

    if state.status not in rule.sources:
        raise PreconditionError(
            f"Cannot {trigger} an order in '{state.status}' status",
            error_code="INVALID_ORDER_STATUS",
            details={
                "status": state.status,
                "trigger": trigger,
                "allowed_statuses": sources_for(trigger),
            },
        )

    if rule.requires_captured and rule.requires_captured not in state.captured_stages:
        raise PreconditionError(
            f"The {rule.requires_captured} milestone must be captured before {trigger}",
            error_code="MILESTONE_OUT_OF_ORDER",
            details={
                "trigger": trigger,
                "required_stage": rule.requires_captured,
                "captured_stages": sorted(state.captured_stages),
            },
        )

    if state.status in rule.deadline_bound and not state.deadline_passed:
        raise PreconditionError(
            "The order can only be cancelled after its delivery deadline has passed",
            error_code="DEADLINE_NOT_PASSED",
            details={"status": state.status},
        )

    side_effects = rule.side_effects
    if trigger == Trigger.CANCEL:
        # Refund first, then release whatever is still authorized.
        side_effects = (
            (SideEffect.REFUND_CAPTURES, SideEffect.CANCEL_AUTHORIZATION)
            if state.captured_stages
            else (SideEffect.CANCEL_AUTHORIZATION,)
        )

    return TransitionPlan(
        trigger=trigger,
        source=state.status,
        target=rule.target,
        capture_stage=rule.capture_stage,
        milestone_stage=rule.milestone_stage,
        side_effects=side_effects,
    )


def _duplicate(trigger: str, state: EscrowState) -> TransitionPlan:
    return TransitionPlan(
        trigger=trigger,
        source=state.status,
        target=state.status,
        duplicate=True,
    )
