from typing import Iterable, Optional


class GraphError(Exception):
    """Base for every error the entity-graph core raises to its callers."""

    status_code = 400


class NotFound(GraphError):
    status_code = 404

    def __init__(self, kind: str, entity_id: Optional[str]):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} not found: {entity_id}")


class InvalidConsolidation(GraphError):
    pass


class NotConsolidated(GraphError):
    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"Package {package_id} is not consolidated under a parent")


class AlreadyAssigned(GraphError):
    def __init__(self, package_id: str, load_id: str):
        self.package_id = package_id
        self.load_id = load_id
        super().__init__(f"Package {package_id} is already assigned to load {load_id}")


class InvalidRequest(GraphError):
    pass


class InvalidTransition(GraphError):
    pass


class DeleteForbidden(GraphError):
    pass


class IndexDrift(GraphError):
    """
    Raised only by strict reconciliation. The stale entries have already been
    repaired by the time the caller sees it.
    """

    def __init__(self, package_id: str, stale: Iterable, missing: Iterable):
        self.package_id = package_id
        self.stale = sorted(stale)
        self.missing = sorted(missing)
        super().__init__(
            f"Index drift on package {package_id}: "
            f"stale={len(self.stale)} missing={len(self.missing)}"
        )


class StoreError(GraphError):
    status_code = 503


class TransactionsUnsupported(StoreError):
    pass
