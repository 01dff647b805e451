# API routes
from mediajobs.api.routes import health
from mediajobs.api.routes import jobs
from mediajobs.api.routes import downloads

__all__ = ["health", "jobs", "downloads"]
