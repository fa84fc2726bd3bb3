"""SQLModel persistence for flows, tasks and agent profiles."""
