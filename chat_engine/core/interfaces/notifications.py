"""
Notification Dispatcher and AI Bridge Protocols

Both collaborators are fire-and-forget from the engine's perspective:
failures are logged and never surfaced to the caller.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Outbound job queue for new-chat and transfer/invite notifications."""

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any],
        priority: int = 3,
        delay: float = 0.0,
    ) -> str | None:
        """
        Enqueue a notification job.

        Returns:
            Optional[str]: Backend job id, if the backend assigns one
        """
        ...


@runtime_checkable
class AIBridge(Protocol):
    """Outbound AI bridge; responses arrive asynchronously through other channels."""

    async def activate(self, workspace_id: str, room_id: str, context: dict[str, Any]) -> None:
        ...

    async def deactivate(self, workspace_id: str, room_id: str) -> None:
        ...

    async def visitor_message(self, workspace_id: str, room_id: str, message: dict[str, Any]) -> None:
        ...
