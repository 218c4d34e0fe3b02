"""Reconciler package converging AWS resources towards their declared state."""

__all__ = [
    "certificate_lib",
    "client",
    "content_lib",
    "dns_lib",
    "engine",
    "errors",
    "function_lib",
    "gateway_lib",
    "metrics",
    "naming",
    "orchestrator",
    "ownership",
    "retry",
    "settings",
    "trigger_lib",
    "types",
    "waiter",
    "website_lib",
]
