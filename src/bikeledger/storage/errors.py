from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for every failure surfaced by the record store."""


class NotFoundError(StoreError):
    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class WriteFailedError(StoreError):
    # Raised after the transaction has been rolled back; the store is unchanged.
    pass


class MappingFailedError(StoreError):
    """A stored record cannot be turned back into a domain value."""

    def __init__(self, kind: str, entity_id: object, reason: str) -> None:
        super().__init__(f"Cannot map {kind} {entity_id}: {reason}")
        self.kind = kind
        self.entity_id = entity_id
        self.reason = reason


class ParentNotFoundError(StoreError):
    def __init__(self, bike_id: object) -> None:
        super().__init__(f"Ride references unknown bike: {bike_id}")
        self.bike_id = bike_id
