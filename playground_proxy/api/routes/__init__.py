"""API routes for the proxy."""

from .chat import chat_completions
from .models import list_models, to_openai_models
from .usage import router as usage_router

__all__ = [
    "chat_completions",
    "list_models",
    "to_openai_models",
    "usage_router",
]
