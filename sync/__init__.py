"""
Sync package — backend client and the local extension bridge.

Provides DetoxBackendClient for limits, usage push and remote emergency
evaluation, and the bridge server the browser shim talks to.
"""

from sync.backend_client import DetoxBackendClient

__all__ = ["DetoxBackendClient"]
