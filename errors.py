from __future__ import annotations


class TrainingError(Exception):
    """Base class for errors raised by the training services."""

    def __init__(
        self,
        message: str,
        entity: str | None = None,
        entity_id: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self) -> str:
        if self.entity is not None and self.entity_id is not None:
            return f"{self.message} ({self.entity} {self.entity_id})"
        return self.message


class NotFoundError(TrainingError, ValueError):
    """A referenced entity does not exist."""

    @classmethod
    def for_entity(cls, entity: str, entity_id: int) -> "NotFoundError":
        return cls(f"{entity} not found", entity=entity, entity_id=entity_id)


class ValidationError(TrainingError, ValueError):
    """Input violates a declared constraint."""


class InvalidStateError(TrainingError, RuntimeError):
    """An operation is inconsistent with the current state of an entity."""
