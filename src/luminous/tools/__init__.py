"""Capabilities package for Luminous."""

from luminous.tools.builtin import register_builtin_capabilities
from luminous.tools.registry import CapabilityContext, CapabilityDescriptor, CapabilityRegistry


def build_registry() -> CapabilityRegistry:
    """Build the registry shared by every turn of the session."""
    return register_builtin_capabilities(CapabilityRegistry())


__all__ = [
    "CapabilityContext",
    "CapabilityDescriptor",
    "CapabilityRegistry",
    "build_registry",
    "register_builtin_capabilities",
]
