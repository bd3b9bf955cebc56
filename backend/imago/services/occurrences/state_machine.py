"""
Occurrence State Machine

Single OccurrenceStatus enum is the source of truth.
State transitions:
    (create) → OPEN → IN_ANALYSIS → AWAITING_CONFIRMATION → FINALIZED
    IN_ANALYSIS → OPEN (analysis failure rollback)

FINALIZED is terminal. Guards that depend on data (non-empty admin note,
well-formed analysis response) are checked by the services; this module only
knows the graph.
"""
from typing import List, Optional, Tuple

from ...models.db_models import OccurrenceStatus
from .errors import InvalidTransition


SUBMIT_FOR_ANALYSIS = "submit_for_analysis"
ANALYSIS_SUCCEEDED = "analysis_succeeded"
ANALYSIS_FAILED = "analysis_failed"
FINALIZE = "finalize"


class OccurrenceStateMachine:
    """
    Occurrence workflow graph.

    Transitions are deterministic on (current_state, action). Nothing regresses
    past FINALIZED.
    """

    # State transition map: (current_state, action) -> new_state
    TRANSITIONS = {
        # Operator submits (or resubmits while a previous attempt is in flight)
        (OccurrenceStatus.OPEN, SUBMIT_FOR_ANALYSIS): OccurrenceStatus.IN_ANALYSIS,
        (OccurrenceStatus.IN_ANALYSIS, SUBMIT_FOR_ANALYSIS): OccurrenceStatus.IN_ANALYSIS,

        # Collaborator outcome
        (OccurrenceStatus.IN_ANALYSIS, ANALYSIS_SUCCEEDED): OccurrenceStatus.AWAITING_CONFIRMATION,
        (OccurrenceStatus.IN_ANALYSIS, ANALYSIS_FAILED): OccurrenceStatus.OPEN,

        # Operator confirms
        (OccurrenceStatus.AWAITING_CONFIRMATION, FINALIZE): OccurrenceStatus.FINALIZED,
    }

    TERMINAL_STATES = {OccurrenceStatus.FINALIZED}

    def can_transition(
        self,
        current_state: OccurrenceStatus,
        action: str,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if an action is allowed from the current state.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if (current_state, action) not in self.TRANSITIONS:
            return False, f"Invalid transition: {current_state.value} + {action}"
        return True, None

    def transition(self, current_state: OccurrenceStatus, action: str) -> OccurrenceStatus:
        """
        Resolve the target state of an action.

        Raises:
            InvalidTransition: If the action is not allowed from current_state
        """
        is_allowed, error = self.can_transition(current_state, action)
        if not is_allowed:
            raise InvalidTransition(error)
        return self.TRANSITIONS[(current_state, action)]

    def sources_for(self, action: str) -> List[OccurrenceStatus]:
        """States from which an action may be taken."""
        return [state for (state, act) in self.TRANSITIONS if act == action]

    def is_edge(self, from_state: OccurrenceStatus, to_state: OccurrenceStatus) -> bool:
        """True when some action moves from_state directly to to_state."""
        return self.action_for(from_state, to_state) is not None

    def action_for(self, from_state: OccurrenceStatus, to_state: OccurrenceStatus) -> Optional[str]:
        for (state, action), target in self.TRANSITIONS.items():
            if state == from_state and target == to_state:
                return action
        return None

    def get_available_actions(self, current_state: OccurrenceStatus) -> List[str]:
        return [action for (state, action) in self.TRANSITIONS if state == current_state]

    def is_terminal(self, state: OccurrenceStatus) -> bool:
        return state in self.TERMINAL_STATES
