"""Domain error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations


class DomainError(Exception):
    """Base class for errors raised to callers of the service layer."""


class BusinessRuleError(DomainError):
    """Request violates a business rule (bad ratio, immutable cache entry, bad range)."""


class DuplicateCacheEntryError(BusinessRuleError):
    """An append-only cache key already holds a value."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Cache entry already exists for {key}")
        self.key = key


class NotFoundError(DomainError):
    """Referenced entity is absent or not owned by the caller."""

    def __init__(self, entity: str, identifier: object) -> None:
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


__all__ = ["DomainError", "BusinessRuleError", "DuplicateCacheEntryError", "NotFoundError"]
