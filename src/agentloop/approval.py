import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Protocol

from agentloop.tools import ToolCallDescriptor

logger = logging.getLogger(__name__)


class ApprovalMode(Enum):
    DEFAULT = "default"
    YOLO = "yolo"


class PermissionProvider(Protocol):
    """Asked before a tool runs when the approval mode requires it."""

    async def request(self, descriptor: ToolCallDescriptor) -> bool: ...


class ApprovalSettings:
    """A process-wide approval mode shared between invocations.

    ``override()`` is the only supported way for an invocation to change
    the mode: it holds a lock for the whole invocation, so overrides from
    concurrent invocations are serialized, and restores the previous
    value however the invocation ends.

    Args:
        mode: Initial approval mode.
    """

    def __init__(self, mode: ApprovalMode = ApprovalMode.DEFAULT):
        self.mode = mode
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def override(self, mode: ApprovalMode):
        async with self._lock:
            previous = self.mode
            self.mode = mode
            logger.debug(f"Approval mode {previous.value} -> {mode.value}")
            try:
                yield self
            finally:
                self.mode = previous
                logger.debug(f"Approval mode restored to {previous.value}")


async def is_permitted(
    descriptor: ToolCallDescriptor,
    mode: ApprovalMode,
    provider: PermissionProvider | None,
) -> bool:
    if mode is ApprovalMode.YOLO:
        return True
    if provider is None:
        logger.warning(f"No permission provider to confirm {descriptor.name}; denying")
        return False
    return await provider.request(descriptor)
