# PATH: execution/state_machine.py
"""
Borrow flow state machine.

BORROW FLOW CONTRACT:
=====================

Steps (FlowStep):
  IDLE                     -> validated, nothing submitted yet
  APPROVING                -> collateral allowance for the join
  OPENING_POSITION         -> building a vault (skipped if one is known)
  SUPPLYING_AND_BORROWING  -> pour: post collateral, mint fy-token to pool
  SWAPPING                 -> sell the minted fy-token for base
  DONE                     -> position id and last tx ref available
  FAILED                   -> absorbing; completed effects are kept

Transitions:
  IDLE                    -> APPROVING | OPENING_POSITION | SUPPLYING_AND_BORROWING
  APPROVING               -> OPENING_POSITION | SUPPLYING_AND_BORROWING
  OPENING_POSITION        -> SUPPLYING_AND_BORROWING
  SUPPLYING_AND_BORROWING -> SWAPPING
  SWAPPING                -> DONE
  any non-terminal        -> FAILED

Skips are allowed only forward; a step whose guard says the work is
already done is simply not entered.
=====================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.constants import FlowStep
from core.exceptions import InvalidTransitionError
from core.time import now_iso

VALID_TRANSITIONS: Dict[FlowStep, List[FlowStep]] = {
    FlowStep.IDLE: [
        FlowStep.APPROVING,
        FlowStep.OPENING_POSITION,
        FlowStep.SUPPLYING_AND_BORROWING,
        FlowStep.FAILED,
    ],
    FlowStep.APPROVING: [
        FlowStep.OPENING_POSITION,
        FlowStep.SUPPLYING_AND_BORROWING,
        FlowStep.FAILED,
    ],
    FlowStep.OPENING_POSITION: [FlowStep.SUPPLYING_AND_BORROWING, FlowStep.FAILED],
    FlowStep.SUPPLYING_AND_BORROWING: [FlowStep.SWAPPING, FlowStep.FAILED],
    FlowStep.SWAPPING: [FlowStep.DONE, FlowStep.FAILED],
    FlowStep.DONE: [],  # Terminal state
    FlowStep.FAILED: [],  # Terminal state
}


@dataclass
class StepTransition:
    """Record of a flow transition."""
    from_step: FlowStep
    to_step: FlowStep
    timestamp: str = ""
    tx_ref: Optional[str] = None
    reason: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = now_iso()


@dataclass
class BorrowFlowMachine:
    """
    State machine for one borrow submission.

    Tracks current step, last transaction reference and history.
    """
    flow_id: str
    step: FlowStep = FlowStep.IDLE
    last_tx_ref: Optional[str] = None
    history: List[StepTransition] = field(default_factory=list)
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = now_iso()

    def can_transition_to(self, next_step: FlowStep) -> bool:
        return next_step in VALID_TRANSITIONS.get(self.step, [])

    def transition_to(
        self,
        next_step: FlowStep,
        tx_ref: Optional[str] = None,
        reason: str = "",
    ) -> StepTransition:
        """
        Move to next_step.

        Raises InvalidTransitionError if the transition is not allowed.
        """
        if not self.can_transition_to(next_step):
            raise InvalidTransitionError(self.step, next_step, VALID_TRANSITIONS.get(self.step, []))

        transition = StepTransition(
            from_step=self.step,
            to_step=next_step,
            tx_ref=tx_ref,
            reason=reason,
        )
        self.history.append(transition)
        self.step = next_step
        if tx_ref:
            self.last_tx_ref = tx_ref
        return transition

    def record_tx(self, tx_ref: str) -> None:
        """Remember a confirmed transaction without changing step."""
        self.last_tx_ref = tx_ref

    def fail(self, reason: str = "") -> StepTransition:
        """FAILED is reachable from every non-terminal step."""
        return self.transition_to(FlowStep.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return len(VALID_TRANSITIONS.get(self.step, [])) == 0

    @property
    def is_success(self) -> bool:
        return self.step == FlowStep.DONE

    @property
    def steps_visited(self) -> List[FlowStep]:
        return [t.to_step for t in self.history]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "step": self.step.value,
            "last_tx_ref": self.last_tx_ref,
            "is_terminal": self.is_terminal,
            "created_at": self.created_at,
            "history": [
                {
                    "from_step": t.from_step.value,
                    "to_step": t.to_step.value,
                    "timestamp": t.timestamp,
                    "tx_ref": t.tx_ref,
                    "reason": t.reason,
                }
                for t in self.history
            ],
        }
