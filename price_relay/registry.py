# -*- coding: utf-8 -*-
"""
price_relay/registry.py
数据源登记表：name -> SourceDescriptor 的有序映射。
- 名称唯一
- 主数据源（A00铝）可编辑、不可删除、不可改名
- 读写 ops/sources.yml
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from price_relay.models import SourceDescriptor

logger = logging.getLogger(__name__)

PRIMARY_SOURCE = SourceDescriptor(
    name="A00铝",
    location="https://www.ccmn.cn/",
    match_key="A00铝",
)


class RegistryError(ValueError):
    pass


def _check_fields(desc: SourceDescriptor) -> None:
    if not (desc.name or "").strip() or not (desc.location or "").strip() or not (desc.match_key or "").strip():
        raise RegistryError("name / url / match_key 均不能为空")


class SourceRegistry:
    def __init__(
        self,
        sources: Optional[List[SourceDescriptor]] = None,
        *,
        path: Optional[Union[str, Path]] = None,
        primary: SourceDescriptor = PRIMARY_SOURCE,
    ):
        self._primary = primary
        self._path = Path(path) if path else None
        self._sources: Dict[str, SourceDescriptor] = {}
        for desc in sources or []:
            self.add(desc)

    # --------- 读写文件 ---------
    @classmethod
    def load(cls, path: Union[str, Path], primary: SourceDescriptor = PRIMARY_SOURCE) -> "SourceRegistry":
        """读取 sources.yml；文件不存在时只含主数据源。"""
        p = Path(path)
        reg = cls(path=p, primary=primary)
        if not p.exists():
            logger.info("未找到 %s，仅使用主数据源 %s", p, primary.name)
            reg._sources[primary.name] = primary
            return reg
        with open(p, "r", encoding="utf-8") as f:
            items = (yaml.safe_load(f) or {}).get("sources", []) or []
        for i, item in enumerate(items):
            if not isinstance(item, dict):
                logger.warning("%s 第 %d 项不是映射，已跳过: %r", p, i + 1, item)
                continue
            try:
                reg.add(SourceDescriptor(
                    name=str(item.get("name") or "").strip(),
                    location=str(item.get("url") or "").strip(),
                    match_key=str(item.get("match_key") or "").strip(),
                ))
            except RegistryError as e:
                logger.warning("%s 第 %d 项无效，已跳过: %s", p, i + 1, e)
        return reg

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {"sources": [
            {"name": d.name, "url": d.location, "match_key": d.match_key}
            for d in self._sources.values()
        ]}
        with open(self._path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False)

    # --------- CRUD ---------
    @property
    def primary(self) -> SourceDescriptor:
        return self._primary

    def list(self) -> List[SourceDescriptor]:
        return list(self._sources.values())

    def get(self, name: str) -> Optional[SourceDescriptor]:
        return self._sources.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._sources

    def __len__(self) -> int:
        return len(self._sources)

    def add(self, desc: SourceDescriptor) -> SourceDescriptor:
        _check_fields(desc)
        if desc.name in self._sources:
            raise RegistryError(f"数据源 {desc.name} 已存在")
        self._sources[desc.name] = desc
        return desc

    def update(self, old_name: str, desc: SourceDescriptor) -> SourceDescriptor:
        _check_fields(desc)
        if old_name not in self._sources:
            raise RegistryError(f"数据源 {old_name} 不存在")
        if old_name == self._primary.name and desc.name != old_name:
            raise RegistryError(f"主数据源 {old_name} 不可改名")
        if desc.name != old_name and desc.name in self._sources:
            raise RegistryError(f"数据源 {desc.name} 已存在")
        # 保持原有顺序
        self._sources = {
            (desc.name if k == old_name else k): (desc if k == old_name else v)
            for k, v in self._sources.items()
        }
        return desc

    def delete(self, name: str) -> None:
        if name == self._primary.name:
            raise RegistryError(f"主数据源 {name} 不可删除")
        if name not in self._sources:
            raise RegistryError(f"数据源 {name} 不存在")
        del self._sources[name]

    def cycle_sources(self) -> List[SourceDescriptor]:
        """本轮要跑的数据源；主数据源缺失时补在最前面。"""
        out = self.list()
        if self._primary.name not in self._sources:
            out.insert(0, self._primary)
        return out
