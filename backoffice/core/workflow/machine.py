"""In-memory guard for instance state transitions.

The processor builds one machine per decision from the locked row and asks
it for the target state before touching the database.
"""

from typing import Optional, Dict, Any

from .errors import StateConflictError
from .states import (
    InstanceState,
    InstanceTransition,
    can_transition,
    get_transition_rule,
    TERMINAL_STATES,
)


class InstanceStateMachine:
    """
    State machine for a single workflow instance.

    Manages transitions between instance states with:
    - Validation against the transition table
    - Rejection of any move out of a terminal state
    - A transition record the caller persists as history
    """

    def __init__(self, instance_id: int, current_state: InstanceState):
        self.instance_id = instance_id
        self._state = InstanceState(current_state)

    @property
    def state(self) -> InstanceState:
        """Current state of the instance."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal (no further transitions)."""
        return self._state in TERMINAL_STATES

    def assert_active(self) -> None:
        """
        Raises:
            StateConflictError: If the instance was already approved or rejected
        """
        if self.is_terminal:
            raise StateConflictError(
                f"Workflow instance {self.instance_id} already processed ({self._state.value})",
                instance_id=self.instance_id,
                state=self._state.value,
            )

    def transition(
        self,
        transition: InstanceTransition,
        *,
        user_id: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Perform a state transition.

        Args:
            transition: The transition to perform
            user_id: ID of user performing the transition
            comment: Optional comment or rejection reason

        Returns:
            Transition record with from/to states and the history action

        Raises:
            StateConflictError: If the transition is invalid from the current state
        """
        self.assert_active()

        if not can_transition(self._state, transition):
            raise StateConflictError(
                f"Cannot perform {transition.value} from state {self._state.value}",
                instance_id=self.instance_id,
                state=self._state.value,
            )

        rule = get_transition_rule(self._state, transition)
        record = {
            "instance_id": self.instance_id,
            "from_state": self._state.value,
            "to_state": rule.to_state.value,
            "transition": transition.value,
            "history_action": rule.history_action.value,
            "user_id": user_id,
            "comment": comment,
        }
        self._state = rule.to_state
        return record
