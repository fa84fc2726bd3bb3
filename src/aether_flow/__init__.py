"""LLM-driven mission planning and single-flight task orchestration."""

__version__ = "0.1.0"
