"""Container engine adapters.

This module handles:
- The EngineAdapter interface consumed by the build orchestrator
- The Docker implementation of that interface
"""

from boxbuild.engine.base import MUTATING_CALLS, ContainerHandle, EngineAdapter

__all__ = ["MUTATING_CALLS", "ContainerHandle", "EngineAdapter"]

# DockerEngine is imported from boxbuild.engine.docker so the SDK is only
# loaded by callers that talk to a daemon
