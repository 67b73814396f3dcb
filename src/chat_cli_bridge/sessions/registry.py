from __future__ import annotations

import asyncio

from loguru import logger

from chat_cli_bridge.process.supervisor import AssistantProcessSupervisor


class ActiveProcessRegistry:
    """Supervisors owned by live sessions, keyed by user id."""

    def __init__(self) -> None:
        self._supervisors: dict[str, AssistantProcessSupervisor] = {}

    def __len__(self) -> int:
        return len(self._supervisors)

    def __contains__(self, user_id: object) -> bool:
        return str(user_id) in self._supervisors

    def register(self, user_id: str, supervisor: AssistantProcessSupervisor) -> None:
        self._supervisors[str(user_id)] = supervisor

    def unregister(self, user_id: str) -> AssistantProcessSupervisor | None:
        return self._supervisors.pop(str(user_id), None)

    def get(self, user_id: str) -> AssistantProcessSupervisor | None:
        return self._supervisors.get(str(user_id))

    def cancel_all(self) -> int:
        cancelled = 0
        for user_id, supervisor in self._supervisors.items():
            if supervisor.cancel():
                logger.info(f"Cancelled running process of user {user_id}")
                cancelled += 1
        return cancelled

    async def shutdown(self) -> None:
        """Cancel every running process, wait for them to finish and forget them."""
        supervisors = list(self._supervisors.values())
        count = self.cancel_all()
        if supervisors:
            await asyncio.gather(*(supervisor.wait() for supervisor in supervisors), return_exceptions=True)
        self._supervisors.clear()
        logger.info(f"Process registry shut down ({count} process(es) cancelled)")
