"""Repository layer: generic query/mutation helpers over mapped entities.

Repositories accept an AsyncSession explicitly (per repository or per call)
and fall back to the default session of the process-wide DatabaseManager.
"""

from .entity_repo import EntityRepository

__all__ = ["EntityRepository"]
