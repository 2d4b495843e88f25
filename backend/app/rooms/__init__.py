"""HTTP API for chat rooms, room members, message history and users."""
