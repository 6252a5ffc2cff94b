"""Public exports for the LangGraph client implementation package."""

from langgraph_client_impl.langgraph_impl import register as _register_client
from langgraph_client_impl.models_impl import register as _register_models


def register() -> None:
    """Register the LangGraph client and model implementations."""
    _register_client()
    _register_models()


register()
