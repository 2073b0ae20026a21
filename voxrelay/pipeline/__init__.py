"""VoxRelay turn-taking pipeline.

The TurnCoordinator decides when the relay may ask the voice transport for
a new response, keeping at most one response in flight per call.
"""

from voxrelay.pipeline.turn_coordinator import TurnCoordinator

__all__ = ["TurnCoordinator"]
