"""API module for the proxy."""

from .routes import chat_completions, list_models, to_openai_models, usage_router

__all__ = ["chat_completions", "list_models", "to_openai_models", "usage_router"]
