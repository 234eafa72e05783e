from __future__ import annotations

from statemachine import State, StateMachine

from world_tavern.models import Session


class GenerationFSM(StateMachine):
    """Generation lifecycle of one session.

    idle -> generating on send / regenerate / continue; back to idle on
    completion, provider error or abort. The FSM only guards transitions;
    the guard persists the result through a compare-and-set.
    """

    idle = State("Idle", value="idle", initial=True)
    generating = State("Generating", value="generating")

    begin = idle.to(generating)
    finish = generating.to(idle)

    def __init__(self, session: Session):
        self.session = session
        super().__init__(start_value=session.generation_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)
