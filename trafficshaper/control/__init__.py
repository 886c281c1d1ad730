"""Run supervision and the HTTP/WebSocket control surface.

The ``RunSupervisor`` owns the state machine and emission loop; ``api``
exposes it through aiohttp routes.  ``api`` is not imported here so the
supervisor can be used without the web stack loaded.
"""

from .supervisor import RunState, RunStatus, RunSupervisor, StopReason

__all__ = ["RunState", "RunStatus", "RunSupervisor", "StopReason"]
