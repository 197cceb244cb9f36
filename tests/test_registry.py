# -*- coding: utf-8 -*-
import pytest
import yaml

from price_relay.models import SourceDescriptor
from price_relay.registry import PRIMARY_SOURCE, RegistryError, SourceRegistry

COPPER = SourceDescriptor("电解铜", "https://www.ccmn.cn/", "1#电解铜")


def test_delete_primary_is_rejected_and_registry_unchanged():
    reg = SourceRegistry([PRIMARY_SOURCE, COPPER])
    with pytest.raises(RegistryError, match="不可删除"):
        reg.delete(PRIMARY_SOURCE.name)
    assert reg.list() == [PRIMARY_SOURCE, COPPER]


def test_edit_primary_succeeds_but_rename_is_rejected():
    reg = SourceRegistry([PRIMARY_SOURCE])
    edited = SourceDescriptor(PRIMARY_SOURCE.name, "https://mirror.example.com/", "A00铝")
    reg.update(PRIMARY_SOURCE.name, edited)
    assert reg.get(PRIMARY_SOURCE.name) == edited

    with pytest.raises(RegistryError, match="不可改名"):
        reg.update(PRIMARY_SOURCE.name, SourceDescriptor("铝", "https://x", "铝"))
    assert reg.get(PRIMARY_SOURCE.name) == edited


def test_add_enforces_unique_and_non_blank():
    reg = SourceRegistry([PRIMARY_SOURCE])
    reg.add(COPPER)
    with pytest.raises(RegistryError, match="已存在"):
        reg.add(COPPER)
    with pytest.raises(RegistryError):
        reg.add(SourceDescriptor("锌锭", "", "锌"))
    assert len(reg) == 2


def test_update_renames_in_place_and_delete():
    zinc = SourceDescriptor("锌锭", "https://www.ccmn.cn/", "0#锌锭")
    reg = SourceRegistry([PRIMARY_SOURCE, COPPER, zinc])
    renamed = SourceDescriptor("铜", COPPER.location, COPPER.match_key)
    reg.update(COPPER.name, renamed)
    assert [d.name for d in reg.list()] == [PRIMARY_SOURCE.name, "铜", "锌锭"]

    with pytest.raises(RegistryError, match="已存在"):
        reg.update("铜", SourceDescriptor("锌锭", "https://x", "x"))
    with pytest.raises(RegistryError, match="不存在"):
        reg.update("镍", renamed)

    reg.delete("锌锭")
    assert "锌锭" not in reg
    with pytest.raises(RegistryError, match="不存在"):
        reg.delete("锌锭")


def test_cycle_sources_puts_missing_primary_first():
    reg = SourceRegistry([COPPER])
    assert reg.cycle_sources() == [PRIMARY_SOURCE, COPPER]
    assert reg.list() == [COPPER]

    reg2 = SourceRegistry([COPPER, PRIMARY_SOURCE])
    assert reg2.cycle_sources() == [COPPER, PRIMARY_SOURCE]


def test_load_and_save_yaml(tmp_path):
    path = tmp_path / "sources.yml"
    missing = SourceRegistry.load(path)
    assert missing.list() == [PRIMARY_SOURCE]

    missing.add(COPPER)
    missing.save()
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["sources"][1] == {"name": "电解铜", "url": "https://www.ccmn.cn/", "match_key": "1#电解铜"}

    again = SourceRegistry.load(path)
    assert again.list() == [PRIMARY_SOURCE, COPPER]


def test_load_skips_malformed_entries(tmp_path):
    path = tmp_path / "sources.yml"
    path.write_text(yaml.safe_dump({"sources": [
        {"name": "A00铝", "url": "https://www.ccmn.cn/", "match_key": "A00铝"},
        {"name": "电解铜", "url": "", "match_key": "1#电解铜"},
        "not-a-mapping",
        {"name": "A00铝", "url": "https://dup.example.com/", "match_key": "A00铝"},
        {"name": "锌锭", "url": "https://www.ccmn.cn/", "match_key": "0#锌锭", "extra": 1},
        {"name": None, "url": "https://www.ccmn.cn/", "match_key": "镍"},
    ]}, allow_unicode=True), encoding="utf-8")

    reg = SourceRegistry.load(path)
    assert [d.name for d in reg.list()] == ["A00铝", "锌锭"]
    assert reg.get("A00铝").location == "https://www.ccmn.cn/"
