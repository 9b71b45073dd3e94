class ReconciliationError(Exception):
    """Base class for errors raised by the reconciliation package."""


class MissingRequiredColumnsError(ReconciliationError):
    """Raised before ingestion when required target fields have no mapped column."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Required fields are not mapped: {', '.join(self.missing)}")


class UnknownIndexKindError(ReconciliationError):
    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"Unknown index kind: {kind!r}")
