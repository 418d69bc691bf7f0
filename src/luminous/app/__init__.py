"""Application layer for Luminous."""

from luminous.app.runtime import HeldReflection, SessionRuntime, SessionSnapshot
from luminous.app.scheduler import ReflectionScheduler
from luminous.app.server import create_app

__all__ = ["HeldReflection", "ReflectionScheduler", "SessionRuntime", "SessionSnapshot", "create_app"]
