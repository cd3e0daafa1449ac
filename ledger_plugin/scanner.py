"""Build store snapshots by enumerating host containers."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .host_api import SafeHost
from .snapshots import ItemRecord, StoreSnapshot


LOGGER = logging.getLogger("WarbandLedger.Scanner")

WARBAND_TAB_IDS: Tuple[int, ...] = (13, 14, 15, 16, 17)
PERSONAL_BANK_IDS: Tuple[int, ...] = (-1, 6, 7, 8, 9, 10, 11, 12)
CARRIED_BAG_IDS: Tuple[int, ...] = (0, 1, 2, 3, 4)
GUILD_TAB_SLOTS = 98
BATTLE_PET_CLASS_ID = 17
_PET_CAGE_NAME = "Pet Cage"
_LINK_NAME_RE = re.compile(r"\[(.+?)\]")


def battle_pet_name(link: Optional[str]) -> Optional[str]:
    """Return the pet name embedded in a caged battle-pet hyperlink."""

    if not link:
        return None
    match = _LINK_NAME_RE.search(link)
    if match is None:
        return None
    name = match.group(1).strip()
    if not name or name == _PET_CAGE_NAME:
        return None
    return name


def build_item_record(host: SafeHost, info: Mapping[str, Any], container_id: Optional[int] = None) -> ItemRecord:
    item_id = int(info["itemID"])
    details = host.item_info(item_id)
    link = info.get("hyperlink") or details.get("link")
    class_id = details.get("classID")
    name = details.get("name")
    if class_id == BATTLE_PET_CLASS_ID:
        name = battle_pet_name(link) or name
    quality = info.get("quality")
    if quality is None:
        quality = details.get("quality", 0)
    return ItemRecord(
        item_id=item_id,
        stack_count=int(info.get("stackCount") or 1),
        quality=int(quality or 0),
        name=name,
        icon=info.get("iconFileID") or details.get("icon"),
        link=link,
        item_level=details.get("itemLevel"),
        item_type=details.get("itemType"),
        item_sub_type=details.get("itemSubType"),
        class_id=class_id,
        subclass_id=details.get("subclassID"),
        container_id=container_id,
    )


def scan_containers(
    host: SafeHost,
    container_ids: Sequence[int],
    *,
    now: float,
    gold: int = 0,
    record_container_ids: bool = False,
) -> Optional[StoreSnapshot]:
    """Enumerate ``container_ids`` in order into a fresh snapshot.

    Tabs are keyed by their 1-based position. A tab whose capacity query fails
    is skipped; a tab with zero capacity is recorded as such and skipped.
    Returns ``None`` when no tab reported any capacity, meaning the store is
    not enumerable right now.
    """

    snapshot = StoreSnapshot(gold=gold, last_scan=now)
    reachable = False
    for tab_index, container_id in enumerate(container_ids, start=1):
        capacity = host.container_num_slots(container_id)
        if capacity is None:
            LOGGER.debug("Container %s unavailable; skipping tab %s", container_id, tab_index)
            continue
        snapshot.tab_capacities[tab_index] = capacity
        if capacity == 0:
            continue
        reachable = True
        snapshot.total_slots += capacity
        slots: Dict[int, ItemRecord] = {}
        for slot in range(1, capacity + 1):
            info = host.container_item_info(container_id, slot)
            if info is None:
                continue
            slots[slot] = build_item_record(host, info, container_id if record_container_ids else None)
        snapshot.used_slots += len(slots)
        snapshot.items[tab_index] = slots
    if not reachable:
        return None
    return snapshot


def scan_warband_bank(host: SafeHost, *, now: float, previous_gold: int = 0) -> Optional[StoreSnapshot]:
    deposited = host.deposited_money()
    gold = previous_gold if deposited is None else deposited
    return scan_containers(host, WARBAND_TAB_IDS, now=now, gold=gold)


def scan_personal_bank(host: SafeHost, *, now: float) -> Optional[StoreSnapshot]:
    main_capacity = host.container_num_slots(PERSONAL_BANK_IDS[0])
    if not main_capacity:
        return None
    return scan_containers(host, PERSONAL_BANK_IDS, now=now, record_container_ids=True)


def scan_guild_bank(host: SafeHost, *, now: float, previous_gold: int = 0) -> Optional[StoreSnapshot]:
    num_tabs = host.guild_bank_num_tabs()
    if not num_tabs:
        return None
    snapshot = StoreSnapshot(gold=previous_gold, last_scan=now)
    reachable = False
    for tab in range(1, num_tabs + 1):
        info = host.guild_bank_tab_info(tab)
        if info is None or not info.get("isViewable"):
            snapshot.tab_capacities[tab] = 0
            continue
        reachable = True
        snapshot.tab_capacities[tab] = GUILD_TAB_SLOTS
        snapshot.total_slots += GUILD_TAB_SLOTS
        slots: Dict[int, ItemRecord] = {}
        for slot in range(1, GUILD_TAB_SLOTS + 1):
            item = host.guild_bank_item(tab, slot)
            if item is None:
                continue
            slots[slot] = build_item_record(host, item)
        snapshot.used_slots += len(slots)
        snapshot.items[tab] = slots
    if not reachable:
        return None
    return snapshot
