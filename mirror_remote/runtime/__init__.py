"""Runtime core and deferred-response coordination."""

from mirror_remote.runtime.core import RemoteRuntimeCore
from mirror_remote.runtime.waiters import DeferredResponseRegistry, Waiter

__all__ = ["RemoteRuntimeCore", "DeferredResponseRegistry", "Waiter"]
