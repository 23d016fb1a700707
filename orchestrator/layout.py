import json
import re
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional

from eth_typing import HexStr
from eth_utils import encode_hex, keccak

from orchestrator.errors import StorageLayoutConflictError

# solc suffixes struct/contract/enum type ids with AST node ids,
# e.g. "t_struct(Pool)1234_storage"; they change on every recompilation.
_AST_ID_PATTERN = re.compile(r"\)\d+")
SLOT_SIZE = 32


def _normalize_type(type_id: str) -> str:
    return _AST_ID_PATTERN.sub(")", type_id)


def _number_of_bytes(types: Dict[str, Any], type_id: str) -> Optional[int]:
    size = types.get(type_id, {}).get("numberOfBytes")
    return int(size) if size is not None else None


class StorageSlot(NamedTuple):
    """A single state variable as reported by the solc storage layout."""

    label: str
    slot: int
    offset: int
    type: str
    number_of_bytes: Optional[int] = None

    @property
    def position(self):
        return self.slot, self.offset

    @property
    def start(self) -> int:
        return self.slot * SLOT_SIZE + self.offset

    @property
    def end(self) -> int:
        """First storage byte past this variable; unknown sizes count as a single byte."""
        return self.start + (self.number_of_bytes or 1)

    @property
    def canonical_type(self) -> str:
        return _normalize_type(self.type)


class StorageLayout:
    """Ordered storage layout of a contract."""

    def __init__(self, slots: Iterable[StorageSlot] = ()):
        self.slots = tuple(slots)

    @classmethod
    def from_solc(cls, data: Dict[str, Any]) -> "StorageLayout":
        """Parses the 'storageLayout' section of solc (or hardhat) output."""
        data = data or {}
        storage = data.get("storage", [])
        types = data.get("types") or {}
        slots = [
            StorageSlot(
                label=entry["label"],
                slot=int(entry["slot"]),
                offset=int(entry.get("offset", 0)),
                type=entry["type"],
                number_of_bytes=_number_of_bytes(types, entry["type"]),
            )
            for entry in storage
        ]
        return cls(slots)

    @classmethod
    def from_list(cls, data: List[Dict[str, Any]]) -> "StorageLayout":
        return cls(StorageSlot(**entry) for entry in data)

    def to_list(self) -> List[Dict[str, Any]]:
        return [slot._asdict() for slot in self.slots]

    @property
    def fingerprint(self) -> HexStr:
        canonical = [
            [slot.label, slot.slot, slot.offset, slot.canonical_type] for slot in self.slots
        ]
        encoded = json.dumps(canonical, separators=(",", ":"))
        return encode_hex(keccak(text=encoded))

    def __iter__(self) -> Iterator[StorageSlot]:
        return iter(self.slots)

    def __len__(self) -> int:
        return len(self.slots)

    def __eq__(self, other) -> bool:
        if not isinstance(other, StorageLayout):
            return NotImplemented
        return self.slots == other.slots

    def __repr__(self) -> str:
        return f"StorageLayout({len(self.slots)} slots, {self.fingerprint[:10]})"


def check_compatibility(current: StorageLayout, candidate: StorageLayout) -> None:
    """
    Raises StorageLayoutConflictError unless every existing variable of 'current' keeps
    its name, slot, offset and type in 'candidate', and new variables are only appended
    after the existing ones. The first incompatible variable is reported.
    """
    existing_slots = current.slots
    candidate_slots = candidate.slots
    candidates_by_label = {slot.label: slot for slot in candidate_slots}

    for index, existing in enumerate(existing_slots):
        replacement = candidate_slots[index] if index < len(candidate_slots) else None
        if replacement is None or replacement.label != existing.label:
            moved = candidates_by_label.get(existing.label)
            if moved is None:
                raise StorageLayoutConflictError(existing.label, "variable was removed")
            raise StorageLayoutConflictError(
                existing.label,
                f"moved from slot {existing.slot} offset {existing.offset} "
                f"to slot {moved.slot} offset {moved.offset}",
            )

        if replacement.position != existing.position:
            raise StorageLayoutConflictError(
                existing.label,
                f"moved from slot {existing.slot} offset {existing.offset} "
                f"to slot {replacement.slot} offset {replacement.offset}",
            )
        if replacement.canonical_type != existing.canonical_type:
            raise StorageLayoutConflictError(
                existing.label,
                f"type changed from {existing.type} to {replacement.type}",
            )

    if not existing_slots:
        return

    storage_end = max(slot.end for slot in existing_slots)
    for appended in candidate_slots[len(existing_slots):]:
        if appended.start < storage_end:
            raise StorageLayoutConflictError(
                appended.label,
                f"new variable at slot {appended.slot} offset {appended.offset} "
                "overlaps existing storage",
            )
