class BillminderError(Exception):
    """Base class for errors raised by the ledger and planner."""


class NotFoundError(BillminderError, LookupError):
    def __init__(self, kind: str, object_id: int) -> None:
        self.kind = kind
        self.object_id = object_id
        super().__init__(f"{kind.capitalize()} #{object_id} not found.")


class InvalidInputError(BillminderError, ValueError):
    pass


class TransportError(BillminderError):
    pass


class PersistenceError(BillminderError):
    pass
