"""Task and execution orchestration for autonomous agent workers."""

__version__ = "0.1.0"
