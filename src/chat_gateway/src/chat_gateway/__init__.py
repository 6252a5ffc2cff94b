"""Gateway between chat clients and a remote multi-agent execution service."""
