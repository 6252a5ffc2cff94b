"""Tools the remote agents call back into; importing the package registers them."""

from chat_gateway.tools import agents, checkout  # noqa: F401
