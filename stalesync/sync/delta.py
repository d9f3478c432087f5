# Stalesync Delta Computer
# Classifies records changed since a cursor into created / updated / deleted

from collections.abc import Iterable
from typing import Optional

from stalesync.sync.interfaces import EntityStore
from stalesync.sync.records import ChangeSet, EntityRecord


def _after(timestamp: Optional[int], since: Optional[int]) -> bool:
    if timestamp is None:
        return False
    return since is None or timestamp > since


def classify_records(records: Iterable[EntityRecord], since: Optional[int]) -> ChangeSet:
    """
    Classify records relative to ``since``.

    Precedence per record, highest first:

    1. deleted after ``since``: id goes to ``deleted``
    2. created after ``since``: full record goes to ``created`` (a later
       update is folded in, the record already carries the newest payload)
    3. updated after ``since``: full record goes to ``updated``

    Records deleted at or before ``since`` are skipped, as are records with
    no timestamp after it. With ``since=None`` every live record is
    ``created``.

    Each list is ordered by the timestamp that triggered inclusion, ties
    broken by id.
    """
    created: list[EntityRecord] = []
    updated: list[EntityRecord] = []
    deleted: list[tuple[int, str]] = []
    seen_deleted: set[str] = set()

    for record in records:
        if record.deleted_at is not None:
            if since is not None and record.deleted_at > since and record.id not in seen_deleted:
                deleted.append((record.deleted_at, record.id))
                seen_deleted.add(record.id)
            continue
        if _after(record.created_at, since):
            created.append(record)
        elif _after(record.updated_at, since):
            updated.append(record)

    created.sort(key=lambda r: (r.created_at, r.id))
    updated.sort(key=lambda r: (r.updated_at, r.id))
    deleted.sort()

    return ChangeSet(created=created, updated=updated, deleted=[entity_id for _, entity_id in deleted])


def compute_changes(store: EntityStore, owner_id: str, entity_type: str, since: Optional[int]) -> ChangeSet:
    """
    Produce the change set for an owner's records of one type.

    Args:
        store: Store holding the authoritative records.
        owner_id: Owner whose records are scanned.
        entity_type: Entity type to scan.
        since: Cursor time; None means everything currently live.

    Returns:
        A fresh ChangeSet.
    """
    records = [r for r in store.list_since(owner_id, entity_type, since) if r.owner_id == owner_id]
    return classify_records(records, since)
