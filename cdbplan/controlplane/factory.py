import logging
import os

from cdbplan.controlplane.base import ControlPlane
from cdbplan.controlplane.memory import MemoryControlPlane
from cdbplan.controlplane.script import ScriptControlPlane

logger = logging.getLogger(__name__)

BACKENDS = ("oracle", "memory", "script")

_control_plane: ControlPlane | None = None


def create_control_plane(backend: str | None = None, call_timeout: float | None = None) -> ControlPlane:
    backend = backend or os.environ.get("CDBPLAN_BACKEND", "memory")
    if backend == "oracle":
        # Deferred so the memory and script backends work without a driver configured.
        from cdbplan.controlplane.oracle import DEFAULT_CALL_TIMEOUT_SECONDS, OracleControlPlane
        return OracleControlPlane(call_timeout=call_timeout or DEFAULT_CALL_TIMEOUT_SECONDS)
    if backend == "script":
        return ScriptControlPlane()
    if backend == "memory":
        return MemoryControlPlane()
    raise ValueError(f"backend must be one of {BACKENDS}, got '{backend}'")


def get_control_plane() -> ControlPlane:
    """Return the process-wide control plane, creating it on first use."""
    global _control_plane
    if _control_plane is None:
        _control_plane = create_control_plane()
        logger.info("Using %s control plane", _control_plane.name)
    return _control_plane


def set_control_plane(control_plane: ControlPlane | None):
    global _control_plane
    _control_plane = control_plane
