"""Command registration and dispatch."""

from .registry import CommandRecord, CommandRegistry, RegistrationResult

__all__ = ["CommandRegistry", "CommandRecord", "RegistrationResult"]
