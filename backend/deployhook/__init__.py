"""DeployHook — webhook-triggered build and release publisher."""

__version__ = "1.0.0"
