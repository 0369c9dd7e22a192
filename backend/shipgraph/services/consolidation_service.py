from typing import List, Optional

from pydantic import BaseModel, Field

from shipgraph.errors import InvalidConsolidation, NotConsolidated, NotFound
from shipgraph.repositories.base import EntityStore, StoreOp, apply_writes
from shipgraph.schemas.records import EntityKind, PackageRecord, utcnow
from shipgraph.utils.log import get_logger

log = get_logger("consolidation", "CONSOLIDATE")


class PackageWithRelationships(BaseModel):
    package: PackageRecord
    parent: Optional[PackageRecord] = None
    children: List[PackageRecord] = Field(default_factory=list)


class ConsolidationManager:
    """
    Owns the one-level parent/child hierarchy of consolidated shipments.

    The child's parent_id is authoritative: it is the commit point of both
    consolidate and deconsolidate, and reconciliation rebuilds the parent's
    child_ids from it. Both sides are written in one call to apply_writes, so
    backends with transactions land them together.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def consolidate(self, child_id: str, parent_id: str) -> bool:
        child = self._package(child_id)
        parent = self._package(parent_id)

        if child_id == parent_id:
            raise InvalidConsolidation(f"Package {child_id} cannot be consolidated into itself")
        if parent.parent_id:
            raise InvalidConsolidation(
                f"Package {parent_id} is itself consolidated under {parent.parent_id}; "
                "consolidation is one level deep"
            )
        if child.child_ids:
            raise InvalidConsolidation(
                f"Package {child_id} is a consolidation parent and cannot become a child"
            )
        if child.parent_id and child.parent_id != parent_id:
            raise InvalidConsolidation(
                f"Package {child_id} is already consolidated under {child.parent_id}; "
                "deconsolidate it first"
            )

        now = utcnow()
        ops = []
        if child_id not in parent.child_ids:
            ops.append(
                StoreOp.put(
                    parent.model_copy(
                        update={
                            "child_ids": parent.child_ids + [child_id],
                            "status_changed_at": now,
                            "updated_at": now,
                        }
                    )
                )
            )
        if child.parent_id != parent_id:
            # commit point goes last: a crash before it leaves only a parent-side
            # entry, which reconciliation drops
            ops.append(
                StoreOp.put(
                    child.model_copy(
                        update={
                            "parent_id": parent_id,
                            "consolidated_at": now,
                            "status_changed_at": now,
                            "updated_at": now,
                        }
                    )
                )
            )
        apply_writes(self.store, ops)
        if ops:
            log.info("package %s consolidated under %s", child_id, parent_id)
        return True

    def deconsolidate(self, child_id: str) -> bool:
        child = self._package(child_id)
        if not child.parent_id:
            raise NotConsolidated(child_id)

        now = utcnow()
        ops = [
            StoreOp.put(
                child.model_copy(
                    update={
                        "parent_id": None,
                        "consolidated_at": None,
                        "status_changed_at": now,
                        "updated_at": now,
                    }
                )
            )
        ]
        parent = self.store.get(EntityKind.PACKAGE, child.parent_id)
        if parent is None:
            log.warning("parent %s of package %s no longer exists", child.parent_id, child_id)
        elif child_id in parent.child_ids:
            ops.append(
                StoreOp.put(
                    parent.model_copy(
                        update={
                            "child_ids": [c for c in parent.child_ids if c != child_id],
                            "status_changed_at": now,
                            "updated_at": now,
                        }
                    )
                )
            )
        apply_writes(self.store, ops)
        log.info("package %s removed from parent %s", child_id, child.parent_id)
        return True

    def release_children(self, parent_id: str) -> List[str]:
        """Deconsolidate every child of parent_id. Returns the ids that were released."""
        parent = self._package(parent_id)
        released = []
        for child_id in list(parent.child_ids):
            child = self.store.get(EntityKind.PACKAGE, child_id)
            if child is not None and child.parent_id == parent_id:
                self.deconsolidate(child_id)
                released.append(child_id)
        # whatever is left points nowhere (vanished or re-parented children)
        parent = self._package(parent_id)
        if parent.child_ids:
            self.store.put(parent.model_copy(update={"child_ids": [], "updated_at": utcnow()}))
        return released

    def get_with_relationships(self, package_id: str) -> PackageWithRelationships:
        package = self._package(package_id)
        result = PackageWithRelationships(package=package)
        for child_id in package.child_ids:
            child = self.store.get(EntityKind.PACKAGE, child_id)
            if child is None:
                log.warning("child %s of package %s no longer resolves; skipped", child_id, package_id)
                continue
            result.children.append(child)
        if package.parent_id:
            result.parent = self.store.get(EntityKind.PACKAGE, package.parent_id)
            if result.parent is None:
                log.warning("parent %s of package %s no longer resolves", package.parent_id, package_id)
        return result

    def _package(self, package_id: str) -> PackageRecord:
        package = self.store.get(EntityKind.PACKAGE, package_id)
        if package is None:
            raise NotFound("package", package_id)
        return package
