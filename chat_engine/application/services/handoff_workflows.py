"""
Handoff Workflows

Moves rooms between agents and departments. Every workflow follows the same
three steps:

    1. Validate   - load the room, check participants/departments, check the
                    target agent's capacity. Nothing is mutated on failure.
    2. Mutate     - update the cached participant/department sets through the
                    RoomStore (which invalidates the snapshot).
    3. Enqueue    - durable audit job with explicit participant updates and
                    session-history entries, plus a notification.

Workflow effects:

    Workflow                          Primary removed     Agent added   Departments
    agent transfer accept             if still active     yes           -
    agent invitation accept           no                  secondary     -
    department transfer request       no                  no            + target
    department transfer accept        no                  no            current -> target, - source
    department transfer cancel        no                  no            - target
    department invite                 no                  no            + department
    department invitation accept      no                  yes           -
    department invitation reject      no                  no            - department
"""

from typing import Any

from chat_engine.application.services.base import EngineService
from chat_engine.application.services.participant_manager import (
    CapacityGuard,
    participant_update,
    session_history_entry,
)
from chat_engine.application.services.room_store import RoomStore
from chat_engine.core.config.constants import JobPriority, JobType, NotificationType, ParticipantReason
from chat_engine.core.exceptions import (
    AgentAlreadyActiveError,
    ChatEngineError,
    DepartmentMismatchError,
    ValidationError,
)
from chat_engine.core.logging.logger import bind_room_context, get_logger
from chat_engine.domain.models import (
    DepartmentInvitation,
    DepartmentTransferRequest,
    InvitationRequest,
    Room,
    TransferRequest,
    agent_actor,
)
from chat_engine.infrastructure.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)


class HandoffWorkflows(EngineService):
    def __init__(self, *args, rooms: RoomStore, capacity: CapacityGuard, **kwargs):
        super().__init__(*args, **kwargs)
        self._rooms = rooms
        self._capacity = capacity
        self._metrics = get_metrics_collector()

    # =========================================================================
    # Agent handoffs
    # =========================================================================

    async def accept_transfer(self, request: TransferRequest) -> Room:
        """
        Accept an agent-to-agent transfer.

        The previous primary agent is removed only if still active; a room the
        primary already left is treated as an agent-less room.

        STAGE-HW.1: Transfer accept
        """
        workflow = "agent_transfer"
        room_id = request.room_id
        bind_room_context(room_id, request.workspace_id)

        with self._track(workflow):
            await self._rooms.get_room(room_id, request.workspace_id)
            participants = await self._ensure_can_join(room_id, request.to_agent_id)

            updates: list[dict[str, str]] = []
            history: list[dict[str, str]] = []
            now = self._clock()

            from_actor = agent_actor(request.from_agent_id) if request.from_agent_id else None
            if from_actor is not None and from_actor in participants:
                await self._rooms.remove_participant(room_id, request.workspace_id, from_actor)
                updates.append(participant_update("remove", from_actor, ParticipantReason.TRANSFERRED_OUT))
                history.append(
                    session_history_entry(request.from_agent_id, "left", ParticipantReason.TRANSFERRED_OUT, now)
                )
            else:
                logger.info(
                    "Primary agent already absent, transferring into agent-less room",
                    stage="HW.1",
                    room_id=room_id,
                    from_agent_id=request.from_agent_id,
                )

            to_actor = agent_actor(request.to_agent_id)
            await self._rooms.add_participant(room_id, request.workspace_id, to_actor)
            updates.append(participant_update("add", to_actor, ParticipantReason.TRANSFERRED_IN))
            history.append(session_history_entry(request.to_agent_id, "joined", ParticipantReason.TRANSFERRED_IN, now))

            self._enqueue(
                JobType.CHAT_TRANSFER_ACCEPTED,
                {
                    "room_id": room_id,
                    "workspace_id": request.workspace_id,
                    "from_agent_id": request.from_agent_id,
                    "to_agent_id": request.to_agent_id,
                    "reason": request.reason,
                    "participant_updates": updates,
                    "session_history": history,
                },
                idempotency_key=f"transfer:{room_id}:{request.to_agent_id}:{request.requested_at.timestamp()}",
                priority=JobPriority.CRITICAL,
            )
            self._notify(
                NotificationType.CHAT_TRANSFER_ACCEPTED,
                {
                    "room_id": room_id,
                    "workspace_id": request.workspace_id,
                    "from_agent_id": request.from_agent_id,
                    "to_agent_id": request.to_agent_id,
                },
                priority=JobPriority.CRITICAL,
            )

        logger.info("Transfer accepted", stage="HW.1", room_id=room_id, to_agent_id=request.to_agent_id)
        return await self._rooms.get_room(room_id, request.workspace_id)

    async def accept_invitation(self, request: InvitationRequest) -> Room:
        """
        Add the invitee as a secondary agent. The inviting agent stays.

        STAGE-HW.2: Invitation accept
        """
        workflow = "agent_invitation"
        room_id = request.room_id
        bind_room_context(room_id, request.workspace_id)

        with self._track(workflow):
            await self._rooms.get_room(room_id, request.workspace_id)
            await self._ensure_can_join(room_id, request.invitee_agent_id)

            now = self._clock()
            actor = agent_actor(request.invitee_agent_id)
            await self._rooms.add_participant(room_id, request.workspace_id, actor)

            self._enqueue(
                JobType.CHAT_INVITATION_ACCEPTED,
                {
                    "room_id": room_id,
                    "workspace_id": request.workspace_id,
                    "inviter_agent_id": request.inviter_agent_id,
                    "invitee_agent_id": request.invitee_agent_id,
                    "participant_updates": [
                        participant_update("add", actor, ParticipantReason.INVITATION_ACCEPTED)
                    ],
                    "session_history": [
                        session_history_entry(
                            request.invitee_agent_id, "joined", ParticipantReason.INVITATION_ACCEPTED, now
                        )
                    ],
                },
                idempotency_key=f"invitation:{room_id}:{request.invitee_agent_id}:{request.requested_at.timestamp()}",
                priority=JobPriority.HIGH,
            )
            self._notify(
                NotificationType.CHAT_INVITATION_ACCEPTED,
                {
                    "room_id": room_id,
                    "workspace_id": request.workspace_id,
                    "inviter_agent_id": request.inviter_agent_id,
                    "invitee_agent_id": request.invitee_agent_id,
                },
                priority=JobPriority.HIGH,
            )

        logger.info(
            "Invitation accepted", stage="HW.2", room_id=room_id, invitee_agent_id=request.invitee_agent_id
        )
        return await self._rooms.get_room(room_id, request.workspace_id)

    # =========================================================================
    # Department transfers
    # =========================================================================

    async def request_department_transfer(self, request: DepartmentTransferRequest) -> Room:
        """
        STAGE-HW.3: Department transfer request
        """
        room_id = request.room_id
        bind_room_context(room_id, request.workspace_id)

        with self._track("department_transfer_request"):
            room = await self._rooms.get_room(room_id, request.workspace_id)
            self._ensure_serving(room, request.from_department_id)
            if request.to_department_id == request.from_department_id:
                raise ValidationError(
                    "Cannot transfer a room to its serving department",
                    room_id=room_id,
                    details={"department_id": request.to_department_id},
                )

            await self._rooms.add_department(room_id, request.workspace_id, request.to_department_id)
            self._enqueue(
                JobType.DEPARTMENT_TRANSFER,
                self._department_transfer_payload(request, "requested"),
                idempotency_key=self._department_transfer_key(request, "requested"),
                priority=JobPriority.CRITICAL,
            )
            self._notify(
                NotificationType.DEPARTMENT_TRANSFER_REQUESTED,
                self._department_transfer_payload(request, "requested"),
                priority=JobPriority.CRITICAL,
            )

        logger.info(
            "Department transfer requested",
            stage="HW.3",
            room_id=room_id,
            from_department_id=request.from_department_id,
            to_department_id=request.to_department_id,
        )
        return await self._rooms.get_room(room_id, request.workspace_id)

    async def accept_department_transfer(self, request: DepartmentTransferRequest) -> Room:
        """
        Move the serving department to the target and drop the source.

        STAGE-HW.4: Department transfer accept
        """
        room_id = request.room_id
        bind_room_context(room_id, request.workspace_id)

        with self._track("department_transfer_accept"):
            room = await self._rooms.get_room(room_id, request.workspace_id)
            self._ensure_serving(room, request.from_department_id)
            self._ensure_department_member(room, request.to_department_id)

            await self._rooms.set_current_department(room_id, request.workspace_id, request.to_department_id)
            await self._rooms.remove_department(room_id, request.workspace_id, request.from_department_id)

            payload = self._department_transfer_payload(request, "accepted")
            self._enqueue(
                JobType.DEPARTMENT_TRANSFER_ACCEPTED,
                payload,
                idempotency_key=self._department_transfer_key(request, "accepted"),
                priority=JobPriority.CRITICAL,
            )
            self._notify(NotificationType.DEPARTMENT_TRANSFER_ACCEPTED, payload, priority=JobPriority.CRITICAL)

        logger.info(
            "Department transfer accepted",
            stage="HW.4",
            room_id=room_id,
            current_department_id=request.to_department_id,
        )
        return await self._rooms.get_room(room_id, request.workspace_id)

    async def cancel_department_transfer(self, request: DepartmentTransferRequest) -> Room:
        """
        Withdraw a pending transfer. The serving department is unchanged.

        STAGE-HW.5: Department transfer cancel
        """
        room_id = request.room_id
        bind_room_context(room_id, request.workspace_id)

        with self._track("department_transfer_cancel"):
            room = await self._rooms.get_room(room_id, request.workspace_id)
            # An accepted transfer has already moved the serving department.
            self._ensure_serving(room, request.from_department_id)
            self._ensure_department_member(room, request.to_department_id)

            await self._rooms.remove_department(room_id, request.workspace_id, request.to_department_id)

            payload = self._department_transfer_payload(request, "cancelled")
            self._enqueue(
                JobType.DEPARTMENT_TRANSFER_CANCELLED,
                payload,
                idempotency_key=self._department_transfer_key(request, "cancelled"),
                priority=JobPriority.CRITICAL,
            )
            self._notify(NotificationType.DEPARTMENT_TRANSFER_CANCELLED, payload, priority=JobPriority.CRITICAL)

        logger.info(
            "Department transfer cancelled",
            stage="HW.5",
            room_id=room_id,
            to_department_id=request.to_department_id,
        )
        return await self._rooms.get_room(room_id, request.workspace_id)

    # =========================================================================
    # Department invitations
    # =========================================================================

    async def invite_department(self, invitation: DepartmentInvitation) -> Room:
        """
        STAGE-HW.6: Department invite
        """
        room_id = invitation.room_id
        bind_room_context(room_id, invitation.workspace_id)

        with self._track("department_invite"):
            room = await self._rooms.get_room(room_id, invitation.workspace_id)
            if invitation.department_id in room.departments:
                raise ValidationError(
                    "Department is already part of this room",
                    room_id=room_id,
                    details={"department_id": invitation.department_id},
                )

            await self._rooms.add_department(room_id, invitation.workspace_id, invitation.department_id)
            payload = self._department_invitation_payload(invitation)
            self._enqueue(
                JobType.DEPARTMENT_INVITATION,
                payload,
                idempotency_key=f"department_invitation:{room_id}:{invitation.department_id}:"
                f"{invitation.requested_at.timestamp()}",
                priority=JobPriority.HIGH,
            )
            self._notify(NotificationType.DEPARTMENT_INVITATION, payload, priority=JobPriority.HIGH)

        logger.info("Department invited", stage="HW.6", room_id=room_id, department_id=invitation.department_id)
        return await self._rooms.get_room(room_id, invitation.workspace_id)

    async def accept_department_invitation(self, invitation: DepartmentInvitation, agent_id: str) -> Room:
        """
        Add an agent of the invited department. The department itself was
        added when the invitation was issued.

        STAGE-HW.7: Department invitation accept
        """
        room_id = invitation.room_id
        bind_room_context(room_id, invitation.workspace_id)

        with self._track("department_invitation_accept"):
            room = await self._rooms.get_room(room_id, invitation.workspace_id)
            self._ensure_department_member(room, invitation.department_id)
            await self._ensure_can_join(room_id, agent_id)

            now = self._clock()
            actor = agent_actor(agent_id)
            await self._rooms.add_participant(room_id, invitation.workspace_id, actor)

            payload = self._department_invitation_payload(invitation)
            payload.update(
                agent_id=agent_id,
                participant_updates=[
                    participant_update("add", actor, ParticipantReason.DEPARTMENT_INVITATION_ACCEPTED)
                ],
                session_history=[
                    session_history_entry(agent_id, "joined", ParticipantReason.DEPARTMENT_INVITATION_ACCEPTED, now)
                ],
            )
            self._enqueue(
                JobType.DEPARTMENT_INVITATION_ACCEPTED,
                payload,
                idempotency_key=f"department_invitation_accepted:{room_id}:{invitation.department_id}:{agent_id}",
                priority=JobPriority.HIGH,
            )
            self._notify(
                NotificationType.DEPARTMENT_INVITATION_ACCEPTED,
                {**self._department_invitation_payload(invitation), "agent_id": agent_id},
                priority=JobPriority.HIGH,
            )

        logger.info(
            "Department invitation accepted",
            stage="HW.7",
            room_id=room_id,
            department_id=invitation.department_id,
            agent_id=agent_id,
        )
        return await self._rooms.get_room(room_id, invitation.workspace_id)

    async def reject_department_invitation(self, invitation: DepartmentInvitation, agent_id: str | None = None) -> Room:
        """
        STAGE-HW.8: Department invitation reject
        """
        room_id = invitation.room_id
        bind_room_context(room_id, invitation.workspace_id)

        with self._track("department_invitation_reject"):
            room = await self._rooms.get_room(room_id, invitation.workspace_id)
            self._ensure_department_member(room, invitation.department_id)
            if room.current_department_id == invitation.department_id:
                raise DepartmentMismatchError(
                    "Cannot reject the room's serving department",
                    room_id=room_id,
                    details={"department_id": invitation.department_id},
                )

            await self._rooms.remove_department(room_id, invitation.workspace_id, invitation.department_id)
            payload = {**self._department_invitation_payload(invitation), "rejected_by": agent_id}
            self._enqueue(
                JobType.DEPARTMENT_INVITATION_REJECTED,
                payload,
                idempotency_key=f"department_invitation_rejected:{room_id}:{invitation.department_id}:"
                f"{invitation.requested_at.timestamp()}",
                priority=JobPriority.HIGH,
            )
            self._notify(NotificationType.DEPARTMENT_INVITATION_REJECTED, payload, priority=JobPriority.HIGH)

        logger.info(
            "Department invitation rejected", stage="HW.8", room_id=room_id, department_id=invitation.department_id
        )
        return await self._rooms.get_room(room_id, invitation.workspace_id)

    # =========================================================================
    # Validation helpers
    # =========================================================================

    async def _ensure_can_join(self, room_id: str, agent_id: str) -> set[str]:
        participants = await self._rooms.get_participants(room_id)
        if agent_actor(agent_id) in participants:
            raise AgentAlreadyActiveError(
                "Agent is already active in this room", room_id=room_id, details={"agent_id": agent_id}
            )
        await self._capacity.ensure_available(agent_id, room_id=room_id)
        return participants

    @staticmethod
    def _ensure_serving(room: Room, department_id: str) -> None:
        if room.current_department_id != department_id:
            raise DepartmentMismatchError(
                "Room is not served by the source department",
                room_id=room.room_id,
                details={"expected": department_id, "current_department_id": room.current_department_id},
            )

    @staticmethod
    def _ensure_department_member(room: Room, department_id: str) -> None:
        if department_id not in room.departments:
            raise DepartmentMismatchError(
                "Department is not part of this room",
                room_id=room.room_id,
                details={"department_id": department_id, "departments": list(room.departments)},
            )

    @staticmethod
    def _department_transfer_payload(request: DepartmentTransferRequest, action: str) -> dict[str, Any]:
        return {
            "room_id": request.room_id,
            "workspace_id": request.workspace_id,
            "from_department_id": request.from_department_id,
            "to_department_id": request.to_department_id,
            "requested_by": request.requested_by,
            "reason": request.reason,
            "action": action,
        }

    @staticmethod
    def _department_transfer_key(request: DepartmentTransferRequest, action: str) -> str:
        return (
            f"department_transfer_{action}:{request.room_id}:{request.from_department_id}:"
            f"{request.to_department_id}:{request.requested_at.timestamp()}"
        )

    @staticmethod
    def _department_invitation_payload(invitation: DepartmentInvitation) -> dict[str, Any]:
        return {
            "room_id": invitation.room_id,
            "workspace_id": invitation.workspace_id,
            "department_id": invitation.department_id,
            "invited_by": invitation.invited_by,
            "reason": invitation.reason,
        }

    def _track(self, workflow: str) -> "_HandoffOutcome":
        return _HandoffOutcome(self._metrics, workflow)


class _HandoffOutcome:
    """Records a handoff metric: accepted on clean exit, rejected or failed otherwise."""

    def __init__(self, metrics, workflow: str):
        self._metrics = metrics
        self._workflow = workflow

    def __enter__(self) -> "_HandoffOutcome":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            outcome = "completed"
        elif issubclass(exc_type, ValidationError):
            outcome = "rejected"
        elif issubclass(exc_type, ChatEngineError):
            outcome = "failed"
        else:
            outcome = "error"
        self._metrics.record_handoff(self._workflow, outcome)
        return False
