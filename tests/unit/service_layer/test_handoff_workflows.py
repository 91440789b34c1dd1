"""
Unit Tests for HandoffWorkflows

Tests agent transfers and invitations, the department transfer lifecycle
and department invitations, including validation-before-mutation.
"""

import pytest
from prometheus_client import REGISTRY

from chat_engine.core.config.constants import AgentOnlineStatus, JobType, NotificationType
from chat_engine.core.exceptions import (
    AgentAlreadyActiveError,
    AgentCapacityExceededError,
    AgentOfflineError,
    DepartmentMismatchError,
    RoomNotFoundError,
    ValidationError,
)
from chat_engine.domain.models import (
    DepartmentInvitation,
    DepartmentTransferRequest,
    InvitationRequest,
    TransferRequest,
)
from chat_engine.infrastructure.cache import key_space as keys


def handoff_count(workflow: str, outcome: str) -> float:
    labels = {"workflow": workflow, "outcome": outcome}
    return REGISTRY.get_sample_value("chat_handoff_workflows_total", labels) or 0.0


@pytest.fixture
async def staffed_room(engine, room):
    await engine.participants.add_agent(room.room_id, "ws-1", "a-1")
    return room


def transfer_request(room, **overrides) -> DepartmentTransferRequest:
    fields = {
        "room_id": room.room_id,
        "workspace_id": "ws-1",
        "from_department_id": "dept-x",
        "to_department_id": "dept-y",
        "requested_by": "a-1",
    }
    fields.update(overrides)
    return DepartmentTransferRequest(**fields)


@pytest.mark.unit
class TestAgentTransfer:
    @pytest.mark.asyncio
    async def test_transfer_replaces_primary(self, engine, staffed_room, durable_store, notifier):
        request = TransferRequest(
            room_id=staffed_room.room_id, workspace_id="ws-1", from_agent_id="a-1", to_agent_id="a-2"
        )

        room = await engine.handoffs.accept_transfer(request)
        await engine.write_queue.flush_now()

        assert room.active_agent_ids == ["a-2"]
        [job] = durable_store.jobs_of(JobType.CHAT_TRANSFER_ACCEPTED)
        assert [u["action"] for u in job.payload["participant_updates"]] == ["remove", "add"]
        assert [h["reason"] for h in job.payload["session_history"]] == ["transferred_out", "transferred_in"]
        assert durable_store.participants[staffed_room.room_id] == {"visitor:v-1", "agent:a-2"}
        await engine.notifications.drain()
        assert NotificationType.CHAT_TRANSFER_ACCEPTED.value in notifier.types()

    @pytest.mark.asyncio
    async def test_transfer_into_agentless_room(self, engine, staffed_room, durable_store):
        await engine.participants.remove_agent(staffed_room.room_id, "ws-1", "a-1")
        request = TransferRequest(
            room_id=staffed_room.room_id, workspace_id="ws-1", from_agent_id="a-1", to_agent_id="a-2"
        )

        room = await engine.handoffs.accept_transfer(request)
        await engine.write_queue.flush_now()

        assert room.active_agent_ids == ["a-2"]
        [job] = durable_store.jobs_of(JobType.CHAT_TRANSFER_ACCEPTED)
        assert job.payload["participant_updates"] == [
            {"action": "add", "actor": "agent:a-2", "reason": "transferred_in"}
        ]

    @pytest.mark.asyncio
    async def test_transfer_to_active_agent_rejected(self, engine, staffed_room):
        request = TransferRequest(
            room_id=staffed_room.room_id, workspace_id="ws-1", from_agent_id="a-2", to_agent_id="a-1"
        )

        with pytest.raises(AgentAlreadyActiveError):
            await engine.handoffs.accept_transfer(request)

    @pytest.mark.asyncio
    async def test_offline_target_rejected_without_mutation(self, engine, staffed_room, durable_store, redis_backend):
        durable_store.add_capacity("a-3", online_status=AgentOnlineStatus.OFFLINE)
        request = TransferRequest(
            room_id=staffed_room.room_id, workspace_id="ws-1", from_agent_id="a-1", to_agent_id="a-3"
        )
        before = handoff_count("agent_transfer", "rejected")

        with pytest.raises(AgentOfflineError):
            await engine.handoffs.accept_transfer(request)

        members = redis_backend.sets[keys.room_participants(staffed_room.room_id).key]
        assert members == {"visitor:v-1", "agent:a-1"}
        assert handoff_count("agent_transfer", "rejected") == before + 1

    @pytest.mark.asyncio
    async def test_transfer_unknown_room(self, engine):
        request = TransferRequest(room_id="missing", workspace_id="ws-1", to_agent_id="a-2")
        before = handoff_count("agent_transfer", "failed")

        with pytest.raises(RoomNotFoundError):
            await engine.handoffs.accept_transfer(request)

        assert handoff_count("agent_transfer", "failed") == before + 1


@pytest.mark.unit
class TestAgentInvitation:
    @pytest.mark.asyncio
    async def test_invitee_joins_as_secondary(self, engine, staffed_room, durable_store, notifier):
        request = InvitationRequest(
            room_id=staffed_room.room_id, workspace_id="ws-1", inviter_agent_id="a-1", invitee_agent_id="a-2"
        )
        before = handoff_count("agent_invitation", "completed")

        room = await engine.handoffs.accept_invitation(request)
        await engine.write_queue.flush_now()

        assert room.active_agent_ids == ["a-1", "a-2"]
        assert len(durable_store.jobs_of(JobType.CHAT_INVITATION_ACCEPTED)) == 1
        await engine.notifications.drain()
        assert NotificationType.CHAT_INVITATION_ACCEPTED.value in notifier.types()
        assert handoff_count("agent_invitation", "completed") == before + 1

    @pytest.mark.asyncio
    async def test_invitee_at_capacity_rejected(self, engine, staffed_room, durable_store):
        durable_store.add_capacity("a-2", current_chats=5, max_concurrent_chats=5)
        request = InvitationRequest(room_id=staffed_room.room_id, workspace_id="ws-1", invitee_agent_id="a-2")

        with pytest.raises(AgentCapacityExceededError):
            await engine.handoffs.accept_invitation(request)

        assert durable_store.jobs_of(JobType.CHAT_INVITATION_ACCEPTED) == []


@pytest.mark.unit
class TestDepartmentTransfer:
    @pytest.mark.asyncio
    async def test_request_adds_target(self, engine, room, notifier):
        updated = await engine.handoffs.request_department_transfer(transfer_request(room))

        assert updated.departments == ["dept-x", "dept-y"]
        assert updated.current_department_id == "dept-x"
        await engine.notifications.drain()
        assert NotificationType.DEPARTMENT_TRANSFER_REQUESTED.value in notifier.types()

    @pytest.mark.asyncio
    async def test_accept_moves_serving_department(self, engine, room, durable_store):
        request = transfer_request(room)
        await engine.handoffs.request_department_transfer(request)

        updated = await engine.handoffs.accept_department_transfer(request)
        await engine.write_queue.flush_now()

        assert updated.current_department_id == "dept-y"
        assert updated.departments == ["dept-y"]
        assert len(durable_store.jobs_of(JobType.DEPARTMENT_TRANSFER_ACCEPTED)) == 1

    @pytest.mark.asyncio
    async def test_cancel_before_accept(self, engine, room):
        request = transfer_request(room)
        await engine.handoffs.request_department_transfer(request)

        updated = await engine.handoffs.cancel_department_transfer(request)

        assert updated.departments == ["dept-x"]
        assert updated.current_department_id == "dept-x"

    @pytest.mark.asyncio
    async def test_cancel_after_accept_rejected(self, engine, room):
        request = transfer_request(room)
        await engine.handoffs.request_department_transfer(request)
        await engine.handoffs.accept_department_transfer(request)

        with pytest.raises(DepartmentMismatchError):
            await engine.handoffs.cancel_department_transfer(request)

    @pytest.mark.asyncio
    async def test_request_from_wrong_department(self, engine, room):
        with pytest.raises(DepartmentMismatchError):
            await engine.handoffs.request_department_transfer(transfer_request(room, from_department_id="dept-z"))

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")
        assert fetched.departments == ["dept-x"]

    @pytest.mark.asyncio
    async def test_request_to_same_department(self, engine, room):
        with pytest.raises(ValidationError):
            await engine.handoffs.request_department_transfer(transfer_request(room, to_department_id="dept-x"))

    @pytest.mark.asyncio
    async def test_accept_without_request(self, engine, room):
        with pytest.raises(DepartmentMismatchError):
            await engine.handoffs.accept_department_transfer(transfer_request(room))


@pytest.mark.unit
class TestDepartmentInvitation:
    @pytest.fixture
    def invitation(self, room):
        return DepartmentInvitation(room_id=room.room_id, workspace_id="ws-1", department_id="dept-y", invited_by="a-1")

    @pytest.mark.asyncio
    async def test_invite_adds_department(self, engine, room, invitation, notifier):
        updated = await engine.handoffs.invite_department(invitation)

        assert updated.departments == ["dept-x", "dept-y"]
        await engine.notifications.drain()
        assert NotificationType.DEPARTMENT_INVITATION.value in notifier.types()

    @pytest.mark.asyncio
    async def test_invite_existing_department_rejected(self, engine, room):
        invitation = DepartmentInvitation(room_id=room.room_id, workspace_id="ws-1", department_id="dept-x")

        with pytest.raises(ValidationError):
            await engine.handoffs.invite_department(invitation)

    @pytest.mark.asyncio
    async def test_accept_adds_agent_only(self, engine, room, invitation, durable_store):
        await engine.handoffs.invite_department(invitation)

        updated = await engine.handoffs.accept_department_invitation(invitation, "a-2")
        await engine.write_queue.flush_now()

        assert updated.active_agent_ids == ["a-2"]
        assert updated.departments == ["dept-x", "dept-y"]
        [job] = durable_store.jobs_of(JobType.DEPARTMENT_INVITATION_ACCEPTED)
        assert job.payload["participant_updates"][0]["reason"] == "department_invitation_accepted"

    @pytest.mark.asyncio
    async def test_accept_requires_invited_department(self, engine, room, invitation):
        with pytest.raises(DepartmentMismatchError):
            await engine.handoffs.accept_department_invitation(invitation, "a-2")

    @pytest.mark.asyncio
    async def test_reject_removes_department(self, engine, room, invitation):
        await engine.handoffs.invite_department(invitation)

        updated = await engine.handoffs.reject_department_invitation(invitation, "a-2")

        assert updated.departments == ["dept-x"]

    @pytest.mark.asyncio
    async def test_reject_serving_department_disallowed(self, engine, room):
        invitation = DepartmentInvitation(room_id=room.room_id, workspace_id="ws-1", department_id="dept-x")

        with pytest.raises(DepartmentMismatchError):
            await engine.handoffs.reject_department_invitation(invitation)
