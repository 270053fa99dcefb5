"""
Per-connection session state machine.

A station session starts unauthenticated, becomes authenticated once the
station proves its identity (and may authenticate again, overwriting its
identity), and ends closed.
"""

from statemachine import State, StateMachine

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class SessionStateMachine(StateMachine):
    """
    State machine for a single station or client session.

    States:
    - connected: transport is open, identity unknown
    - authenticated: identity accepted (re-enterable)
    - closed: transport gone, terminal

    Transitions:
    - connected -> authenticated: authenticate
    - authenticated -> authenticated: authenticate (re-authentication)
    - connected | authenticated -> closed: close
    """

    connected = State("Connected", initial=True)
    authenticated = State("Authenticated")
    closed = State("Closed", final=True)

    authenticate = connected.to(authenticated) | authenticated.to.itself()
    close = connected.to(closed) | authenticated.to(closed)

    def __init__(self, connection_id: str):
        # on_enter_state fires during super().__init__()
        self.connection_id = connection_id
        self.authentication_count = 0

        super().__init__()

    def on_enter_state(self, state: State, event=None, **kwargs) -> None:
        logger.debug(
            "Session state transition",
            connection_id=self.connection_id,
            trigger_event=str(event) if event else "initial",
            to_state=state.id,
        )

    def on_authenticate(self) -> None:
        self.authentication_count += 1

    @property
    def is_authenticated(self) -> bool:
        return self.current_state == self.authenticated

    @property
    def is_closed(self) -> bool:
        return self.current_state == self.closed
