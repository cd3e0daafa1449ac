from __future__ import annotations

import pytest

from ledger_plugin.characters import format_gold, identity_key


@pytest.mark.parametrize(
    "identity, expected",
    [
        ({"name": "Aria", "realm": "Silvermoon"}, "Aria-Silvermoon"),
        ({"name": " Aria ", "realm": "Argent Dawn"}, "Aria-Argent Dawn"),
        ({"name": "Aria", "realm": ""}, None),
        ({"realm": "Silvermoon"}, None),
        (None, None),
    ],
)
def test_identity_key(identity, expected) -> None:
    assert identity_key(identity) == expected


def test_format_gold() -> None:
    assert format_gold(0) == "0g 0s 0c"
    assert format_gold(1234567) == "123g 45s 67c"
    assert format_gold(123456789) == "12,345g 67s 89c"
    assert format_gold(-50) == "0g 0s 0c"


def test_first_save_registers_character(engine, host, saved) -> None:
    host.money = 5000

    assert engine.characters.save_current_character() is True
    assert engine.characters.save_current_character() is True

    entry = saved.global_["characters"]["Aria-Silvermoon"]
    assert entry["name"] == "Aria"
    assert entry["level"] == 80
    assert entry["gold"] == 5000
    assert entry["isFavorite"] is False
    assert entry["lastSeen"] == 1_700_000_000.0
    assert saved.char["lastKnownGold"] == 5000
    assert host.messages.count("WarbandLedger: Aria registered.") == 1


def test_save_without_identity_is_skipped(engine, host, saved) -> None:
    host.identity = None

    assert engine.characters.save_current_character() is False
    assert saved.global_["characters"] == {}
    assert engine.characters.saved_this_login is False


def test_update_gold_requires_registered_character(engine, host, saved) -> None:
    host.money = 100
    assert engine.characters.update_gold() is None

    engine.characters.save_current_character()
    host.money = 250

    assert engine.characters.update_gold() == 250
    assert saved.global_["characters"]["Aria-Silvermoon"]["gold"] == 250


def test_list_orders_favorites_then_level_then_name(engine, saved) -> None:
    saved.global_["characters"].update(
        {
            "Zed-Realm": {"name": "Zed", "level": 70, "isFavorite": True},
            "Bob-Realm": {"name": "Bob", "level": 80},
            "Amy-Realm": {"name": "Amy", "level": 80},
        }
    )

    assert [row["key"] for row in engine.list_characters()] == ["Zed-Realm", "Amy-Realm", "Bob-Realm"]

    saved.global_["characters"]["Bob-Realm"]["level"] = 90
    assert [row["key"] for row in engine.list_characters()] == ["Zed-Realm", "Amy-Realm", "Bob-Realm"]

    assert engine.toggle_favorite("Bob-Realm") is True
    assert [row["key"] for row in engine.list_characters()] == ["Bob-Realm", "Zed-Realm", "Amy-Realm"]


def test_toggle_favorite_unknown_character(engine) -> None:
    assert engine.toggle_favorite("Nobody-Nowhere") is None
    assert engine.refresh_count == 0


def test_describe_lists_characters_with_total(engine, saved) -> None:
    assert engine.characters.describe() == ["No characters saved yet."]

    saved.global_["characters"].update(
        {
            "Zed-Realm": {"name": "Zed", "level": 70, "class": "Rogue", "gold": 20000, "isFavorite": True},
            "Amy-Realm": {"name": "Amy", "level": 80, "class": "Priest", "gold": 150},
        }
    )
    engine.cache.invalidate("characters")

    assert engine.characters.describe() == [
        "Saved characters (2):",
        "* Zed-Realm (level 70 Rogue) 2g 0s 0c",
        "Amy-Realm (level 80 Priest) 0g 1s 50c",
        "Total gold: 2g 1s 50c",
    ]
