"""Orchestrator for terminal coding agents (codex, claude, gemini)."""

__version__ = "0.1.0"
