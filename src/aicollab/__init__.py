"""aicollab: capability-based agent orchestration."""

__version__ = "0.1.0"
