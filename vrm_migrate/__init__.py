"""Migrate VRM 0.x avatars (glTF-binary with ``extensions.VRM``) to VRM 1.0."""

from .check import ConsistencyError, check, check_spring_bone, validate
from .errors import MalformedInputError, MigrationError, MissingRequiredFieldError, NotNormalizedError
from .migration import (
    MigratedExtensions,
    MigrationOptions,
    MigrationReport,
    VrmMigrator,
    migrate,
    migrate_data,
)
from .resolver import MeshToNodeResolver

__all__ = [
    "ConsistencyError",
    "MalformedInputError",
    "MeshToNodeResolver",
    "MigratedExtensions",
    "MigrationError",
    "MigrationOptions",
    "MigrationReport",
    "MissingRequiredFieldError",
    "NotNormalizedError",
    "VrmMigrator",
    "check",
    "check_spring_bone",
    "migrate",
    "migrate_data",
    "validate",
]
