"""Translation of the upstream stream into OpenAI chat completion responses.

Provides the aggregate path (one ``chat.completion`` object) and the relay
path (``chat.completion.chunk`` frames terminated by ``[DONE]``).
"""

from .translator import (
    LogicalResult,
    ResultAccumulator,
    aggregate_upstream_stream,
    build_chat_completion,
    fold_events,
    new_completion_id,
)
from .stream_adapter import (
    ChatCompletionStreamAdapter,
    PublicChunk,
    adapt_upstream_stream,
)

__all__ = [
    "ChatCompletionStreamAdapter",
    "LogicalResult",
    "PublicChunk",
    "ResultAccumulator",
    "adapt_upstream_stream",
    "aggregate_upstream_stream",
    "build_chat_completion",
    "fold_events",
    "new_completion_id",
]
