"""Job orchestration backend for externally processed media jobs."""

__version__ = "1.0.0"
