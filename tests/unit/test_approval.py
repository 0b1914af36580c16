import asyncio

import pytest

from agentloop.approval import ApprovalMode, ApprovalSettings, is_permitted
from agentloop.tools import ToolCallDescriptor


class AllowList:
    def __init__(self, allowed):
        self.allowed = allowed
        self.asked = []

    async def request(self, descriptor):
        self.asked.append(descriptor.name)
        return descriptor.name in self.allowed


class TestApprovalSettings:
    @pytest.mark.asyncio
    async def test_override_restores_on_exit(self):
        settings = ApprovalSettings(ApprovalMode.DEFAULT)
        async with settings.override(ApprovalMode.YOLO):
            assert settings.mode is ApprovalMode.YOLO
        assert settings.mode is ApprovalMode.DEFAULT

    @pytest.mark.asyncio
    async def test_override_restores_on_error(self):
        settings = ApprovalSettings(ApprovalMode.DEFAULT)
        with pytest.raises(RuntimeError):
            async with settings.override(ApprovalMode.YOLO):
                raise RuntimeError("boom")
        assert settings.mode is ApprovalMode.DEFAULT

    @pytest.mark.asyncio
    async def test_overrides_are_serialized(self):
        settings = ApprovalSettings(ApprovalMode.DEFAULT)
        seen = []

        async def hold(mode):
            async with settings.override(mode):
                seen.append(settings.mode)
                await asyncio.sleep(0.01)
                seen.append(settings.mode)

        await asyncio.gather(hold(ApprovalMode.YOLO), hold(ApprovalMode.DEFAULT))
        # Each owner sees its own value for its whole critical section.
        assert seen[0] is seen[1]
        assert seen[2] is seen[3]
        assert settings.mode is ApprovalMode.DEFAULT


class TestIsPermitted:
    @pytest.mark.asyncio
    async def test_yolo_skips_provider(self):
        provider = AllowList(set())
        assert await is_permitted(ToolCallDescriptor(name="rm"), ApprovalMode.YOLO, provider)
        assert provider.asked == []

    @pytest.mark.asyncio
    async def test_default_asks_provider(self):
        provider = AllowList({"ls"})
        assert await is_permitted(ToolCallDescriptor(name="ls"), ApprovalMode.DEFAULT, provider)
        assert not await is_permitted(ToolCallDescriptor(name="rm"), ApprovalMode.DEFAULT, provider)
        assert provider.asked == ["ls", "rm"]

    @pytest.mark.asyncio
    async def test_default_without_provider_denies(self):
        assert not await is_permitted(ToolCallDescriptor(name="ls"), ApprovalMode.DEFAULT, None)
