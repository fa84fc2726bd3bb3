"""LLM gateway: operation contracts, routing and the CLI-backed implementation."""
