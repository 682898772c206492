"""Amendment state machine implementation with transition validation.

This module implements the AmendmentStateMachine class, which moves a single
amendment through its lifecycle with guards and side effects. The service
owns the surrounding transaction; the state machine only mutates the
in-memory amendment.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

from pos_backoffice.core.logging import get_logger
from pos_backoffice.services.order_modifications.enums import (
    AmendmentStatus,
    get_allowed_amendment_transitions,
    validate_amendment_transition,
)
from pos_backoffice.services.order_modifications.exceptions import InvalidStateError

logger = get_logger(__name__)


class AmendmentTransitionError(InvalidStateError):
    """Raised when an invalid amendment state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: AmendmentStatus,
        target_state: AmendmentStatus,
        **context: Any,
    ):
        super().__init__(
            message,
            status=current_state.value,
            target_status=target_state.value,
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


class AmendmentStateMachine:
    """State machine for the amendment lifecycle.

    Guards are keyed by (from, to) and must hold for the transition to be
    taken. Side effects are keyed by target status and stamp who acted and
    when.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._transition_guards: Dict[
            tuple[AmendmentStatus, AmendmentStatus], Callable[[Any], bool]
        ] = {
            (AmendmentStatus.DRAFT, AmendmentStatus.PENDING_APPROVAL): (
                lambda amendment: bool(amendment.requires_approval)
            ),
            (AmendmentStatus.DRAFT, AmendmentStatus.APPROVED): (
                lambda amendment: not amendment.requires_approval
            ),
        }
        self._side_effects: Dict[
            AmendmentStatus, Callable[[Any, Optional[int], Dict[str, Any]], None]
        ] = {
            AmendmentStatus.APPROVED: self._effect_approved,
            AmendmentStatus.REJECTED: self._effect_rejected,
            AmendmentStatus.APPLIED: self._effect_applied,
        }

    def validate_transition(self, amendment: Any, target_status: AmendmentStatus) -> bool:
        """Validate if transition to target status is allowed.

        Raises:
            AmendmentTransitionError: If the transition is not in the table
                or its guard does not hold
        """
        current_status = AmendmentStatus(amendment.status)

        if not validate_amendment_transition(current_status, target_status):
            allowed = get_allowed_amendment_transitions(current_status)
            raise AmendmentTransitionError(
                f"Cannot move amendment from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                amendment_id=amendment.id,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None and not guard(amendment):
            raise AmendmentTransitionError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                amendment_id=amendment.id,
                guard_failed=True,
            )

        return True

    def apply_transition(
        self,
        amendment: Any,
        target_status: AmendmentStatus,
        actor_id: Optional[int] = None,
        **details: Any,
    ) -> None:
        """Move the amendment to ``target_status`` and run its side effect.

        Args:
            amendment: Amendment to transition
            target_status: Target status
            actor_id: User taking the action
            **details: ``notes`` for approvals, ``reason`` for rejections
        """
        old_status = AmendmentStatus(amendment.status)
        self.validate_transition(amendment, target_status)

        amendment.status = target_status
        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(amendment, actor_id, details)

        logger.info(
            "Amendment transition applied",
            amendment_id=amendment.id,
            amendment_number=amendment.amendment_number,
            transition=f"{old_status.value}->{target_status.value}",
            actor_id=actor_id,
        )

    def initial_status(self, amendment: Any) -> AmendmentStatus:
        """Status a freshly computed amendment leaves ``draft`` for."""
        if amendment.requires_approval:
            return AmendmentStatus.PENDING_APPROVAL
        return AmendmentStatus.APPROVED

    def get_allowed_transitions(self, amendment: Any) -> Set[AmendmentStatus]:
        return get_allowed_amendment_transitions(AmendmentStatus(amendment.status))

    # Side effects

    def _effect_approved(
        self, amendment: Any, actor_id: Optional[int], details: Dict[str, Any]
    ) -> None:
        # Auto-approved amendments have no approver.
        if amendment.requires_approval:
            amendment.approved_by = actor_id
            amendment.approved_at = self._clock()
            amendment.approval_notes = details.get("notes")

    def _effect_rejected(
        self, amendment: Any, actor_id: Optional[int], details: Dict[str, Any]
    ) -> None:
        amendment.approved_by = actor_id
        amendment.approved_at = self._clock()
        amendment.rejection_reason = details.get("reason")

    def _effect_applied(
        self, amendment: Any, actor_id: Optional[int], details: Dict[str, Any]
    ) -> None:
        amendment.applied_by = actor_id
        amendment.applied_at = self._clock()
