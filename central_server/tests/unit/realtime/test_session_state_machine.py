"""
Tests for the per-connection session state machine.
"""

import pytest
from statemachine.exceptions import TransitionNotAllowed

from ....realtime.session_state_machine import SessionStateMachine


class TestSessionStateMachine:
    """Test session lifecycle transitions."""

    def test_starts_connected(self):
        session = SessionStateMachine("conn-1")
        assert session.current_state == session.connected
        assert not session.is_authenticated
        assert not session.is_closed

    def test_authenticate_then_reauthenticate(self):
        session = SessionStateMachine("conn-1")
        session.authenticate()
        session.authenticate()
        assert session.is_authenticated
        assert session.authentication_count == 2

    def test_close_is_terminal(self):
        session = SessionStateMachine("conn-1")
        session.authenticate()
        session.close()
        assert session.is_closed
        with pytest.raises(TransitionNotAllowed):
            session.authenticate()

    def test_close_without_authenticating(self):
        session = SessionStateMachine("conn-1")
        session.close()
        assert session.is_closed
        assert session.authentication_count == 0
