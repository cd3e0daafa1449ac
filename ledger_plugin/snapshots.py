"""Item records and store snapshots as persisted in the saved variables."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple


def _int_or(value: Any, default: Optional[int]) -> Optional[int]:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ItemRecord:
    item_id: int
    stack_count: int = 1
    quality: int = 0
    name: Optional[str] = None
    icon: Any = None
    link: Optional[str] = None
    item_level: Optional[int] = None
    item_type: Optional[str] = None
    item_sub_type: Optional[str] = None
    class_id: Optional[int] = None
    subclass_id: Optional[int] = None
    container_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "itemID": self.item_id,
            "stackCount": self.stack_count,
            "quality": self.quality,
            "name": self.name,
            "iconFileID": self.icon,
            "itemLink": self.link,
            "itemLevel": self.item_level,
            "itemType": self.item_type,
            "itemSubType": self.item_sub_type,
            "classID": self.class_id,
            "subclassID": self.subclass_id,
        }
        if self.container_id is not None:
            payload["actualBagID"] = self.container_id
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["ItemRecord"]:
        item_id = _int_or(data.get("itemID"), None)
        if not item_id:
            return None
        return cls(
            item_id=item_id,
            stack_count=_int_or(data.get("stackCount"), 1) or 1,
            quality=_int_or(data.get("quality"), 0) or 0,
            name=data.get("name"),
            icon=data.get("iconFileID"),
            link=data.get("itemLink"),
            item_level=_int_or(data.get("itemLevel"), None),
            item_type=data.get("itemType"),
            item_sub_type=data.get("itemSubType"),
            class_id=_int_or(data.get("classID"), None),
            subclass_id=_int_or(data.get("subclassID"), None),
            container_id=_int_or(data.get("actualBagID"), None),
        )


@dataclass
class StoreSnapshot:
    """Full contents of one store at its last successful scan."""

    items: Dict[int, Dict[int, ItemRecord]] = field(default_factory=dict)
    gold: int = 0
    last_scan: float = 0.0
    total_slots: int = 0
    used_slots: int = 0
    tab_capacities: Dict[int, int] = field(default_factory=dict)

    @property
    def item_count(self) -> int:
        return sum(record.stack_count for _, _, record in self.iter_items())

    def iter_items(self) -> Iterator[Tuple[int, int, ItemRecord]]:
        for tab in sorted(self.items):
            slots = self.items[tab]
            for slot in sorted(slots):
                yield tab, slot, slots[slot]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": {
                str(tab): {str(slot): record.to_dict() for slot, record in slots.items()}
                for tab, slots in self.items.items()
            },
            "gold": int(self.gold),
            "lastScan": self.last_scan,
            "totalSlots": int(self.total_slots),
            "usedSlots": int(self.used_slots),
            "tabCapacities": {str(tab): int(capacity) for tab, capacity in self.tab_capacities.items()},
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "StoreSnapshot":
        if not isinstance(data, Mapping):
            return cls()
        items: Dict[int, Dict[int, ItemRecord]] = {}
        raw_items = data.get("items")
        if isinstance(raw_items, Mapping):
            for tab_key, raw_slots in raw_items.items():
                tab = _int_or(tab_key, None)
                if tab is None or not isinstance(raw_slots, Mapping):
                    continue
                slots: Dict[int, ItemRecord] = {}
                for slot_key, raw_record in raw_slots.items():
                    slot = _int_or(slot_key, None)
                    if slot is None or not isinstance(raw_record, Mapping):
                        continue
                    record = ItemRecord.from_dict(raw_record)
                    if record is not None:
                        slots[slot] = record
                items[tab] = slots
        capacities: Dict[int, int] = {}
        raw_capacities = data.get("tabCapacities")
        if isinstance(raw_capacities, Mapping):
            for tab_key, capacity in raw_capacities.items():
                tab = _int_or(tab_key, None)
                if tab is not None:
                    capacities[tab] = _int_or(capacity, 0) or 0
        try:
            last_scan = float(data.get("lastScan") or 0.0)
        except (TypeError, ValueError):
            last_scan = 0.0
        return cls(
            items=items,
            gold=_int_or(data.get("gold"), 0) or 0,
            last_scan=last_scan,
            total_slots=_int_or(data.get("totalSlots"), 0) or 0,
            used_slots=_int_or(data.get("usedSlots"), 0) or 0,
            tab_capacities=capacities,
        )
