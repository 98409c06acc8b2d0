from keydoor.common import exception

###########################
# Authorization Loop States
###########################

IDLE = 0
"""No session is live; a new one is about to be requested"""

SESSION_ACTIVE = 1
"""A session is live and the loop waits for the next presentation event"""

EVALUATING = 2
"""A presentation event is being checked against the allow list and
authenticated"""

SESSION_ENDED = 3
"""The event sequence of the current session is exhausted; the handle is
discarded and a new session is created immediately"""


VALID_STATES = (
    IDLE,
    SESSION_ACTIVE,
    EVALUATING,
    SESSION_ENDED,
)

STATE_REPRESENTATIONS = {
    IDLE: "Idle",
    SESSION_ACTIVE: "Session Active",
    EVALUATING: "Evaluating",
    SESSION_ENDED: "Session Ended",
}


def state_to_str(state: int) -> str:
    if state not in VALID_STATES:
        raise exception.InvalidLoopState()
    return STATE_REPRESENTATIONS[state]
