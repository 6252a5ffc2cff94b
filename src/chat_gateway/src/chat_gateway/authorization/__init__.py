"""Backchannel (CIBA) user-approval flow and the shared authorization state."""
