import uuid

from pydantic import BaseModel, Field

from agentloop.cancellation import CancellationToken
from agentloop.message import ConversationEntry


class SessionInvocation(BaseModel):
    """Scope of one orchestration run.

    Args:
        prompt_id: Identifier echoed back to the caller and passed to
            the model stream source.
        cancellation: Token fired by the transport to stop the run.
        prior_history: History the caller resends to resume a
            conversation. Never mutated.
    """

    prompt_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:13])
    cancellation: CancellationToken = Field(default_factory=CancellationToken)
    prior_history: tuple[ConversationEntry, ...] = ()

    model_config = {"arbitrary_types_allowed": True}
