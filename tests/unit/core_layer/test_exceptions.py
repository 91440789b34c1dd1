"""
Unit Tests for the Exception Hierarchy
"""

import pytest

from chat_engine.core.exceptions import (
    AgentAlreadyActiveError,
    AgentCapacityExceededError,
    AgentNotFoundError,
    AnotherAgentActiveError,
    CacheConnectionError,
    CacheError,
    ChatEngineError,
    DepartmentMismatchError,
    DurablePersistenceError,
    DurableTimeoutError,
    NotFoundError,
    QueueError,
    RoomNotFoundError,
    ValidationError,
    WriteQueueClosedError,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "error_cls, parent",
        [
            (AgentAlreadyActiveError, ValidationError),
            (AnotherAgentActiveError, ValidationError),
            (AgentCapacityExceededError, ValidationError),
            (DepartmentMismatchError, ValidationError),
            (RoomNotFoundError, NotFoundError),
            (AgentNotFoundError, NotFoundError),
            (CacheConnectionError, CacheError),
            (DurableTimeoutError, DurablePersistenceError),
            (WriteQueueClosedError, QueueError),
        ],
    )
    def test_subclass_relationships(self, error_cls, parent):
        assert issubclass(error_cls, parent)
        assert issubclass(error_cls, ChatEngineError)

    def test_validation_errors_are_distinct(self):
        """Callers can tell 'already active' from 'another agent active'."""
        assert not issubclass(AgentAlreadyActiveError, AnotherAgentActiveError)
        assert not issubclass(AnotherAgentActiveError, AgentAlreadyActiveError)


@pytest.mark.unit
class TestChatEngineError:
    def test_to_dict(self):
        error = AgentCapacityExceededError(
            "Agent has reached maximum concurrent chats",
            room_id="r-1",
            details={"agent_id": "a-1", "current_chats": 5},
        )

        assert error.to_dict() == {
            "error_type": "AgentCapacityExceededError",
            "message": "Agent has reached maximum concurrent chats",
            "room_id": "r-1",
            "details": {"agent_id": "a-1", "current_chats": 5},
        }

    def test_details_are_copied(self):
        details = {"agent_id": "a-1"}
        error = ChatEngineError("boom", details=details)
        error.with_context(extra=True)

        assert details == {"agent_id": "a-1"}
        assert error.details == {"agent_id": "a-1", "extra": True}

    def test_repr_includes_room(self):
        error = RoomNotFoundError("Room not found", room_id="r-9")

        assert repr(error) == "RoomNotFoundError(message='Room not found', room_id='r-9')"

    def test_from_exception_wraps_original(self):
        original = ConnectionRefusedError("connection refused")
        error = CacheConnectionError.from_exception(original, host="localhost")

        assert isinstance(error, CacheConnectionError)
        assert error.message == "connection refused"
        assert error.details["original_error"] == "ConnectionRefusedError"
        assert error.details["host"] == "localhost"

    def test_from_exception_uses_class_name_when_message_empty(self):
        error = QueueError.from_exception(TimeoutError())

        assert error.message == "TimeoutError"
