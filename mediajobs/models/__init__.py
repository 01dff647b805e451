"""Shared model helpers. Job tables live in mediajobs.jobs.models."""

from mediajobs.models.base import TimestampMixin, generate_uuid, utcnow

__all__ = ["TimestampMixin", "generate_uuid", "utcnow"]
