# repositories/assignment_repo.py
from collections import OrderedDict
from typing import Iterator, Optional

from variant_bridge.models.schemas.assignment import AssignmentRecord

DEFAULT_CAPACITY = 100


def assignment_key(user_id: str, flag_key: Optional[str]) -> str:
    # A provider event without a flag key is stored under "<user>:undefined".
    return f"{user_id}:{flag_key if flag_key is not None else 'undefined'}"


class AssignmentRepository:
    """
    Bounded in-process store of assignment records keyed by "user:flag".

    Eviction is FIFO on insertion order: once the store is over capacity the
    oldest-inserted key goes, however recently it was read. Overwriting a key
    keeps its original insertion position.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._records: "OrderedDict[str, AssignmentRecord]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def keys(self) -> Iterator[str]:
        return iter(list(self._records.keys()))

    def get(self, key: str) -> Optional[AssignmentRecord]:
        return self._records.get(key)

    def get_assignment(self, user_id: str, flag_key: str) -> Optional[AssignmentRecord]:
        """Retrieves the latest assignment record for a user and flag."""
        return self._records.get(assignment_key(user_id, flag_key))

    def put(self, key: str, record: AssignmentRecord) -> None:
        """Upserts a record, then evicts the oldest entries past capacity."""
        self._records[key] = record

        while len(self._records) > self.capacity:
            self._records.popitem(last=False)

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def clear(self) -> None:
        self._records.clear()
