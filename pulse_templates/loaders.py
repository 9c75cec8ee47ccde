"""
模板加载器

加载器是模板的权威存储；引擎和缓存只持有副本。
"""
from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic_core import PydanticSerializationError

from .errors import LoaderError
from .models import (
    LoadOptions,
    Template,
    TemplateFilter,
    matches_filter,
    template_from_json,
    template_to_json,
)
from .utils import get_logger

logger = get_logger("template-loader")


@dataclass
class LoaderInfo:
    type: str
    name: str
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)


def matches_id_filter(template_id: str, flt: Optional[TemplateFilter]) -> bool:
    """只按模板ID过滤（id_pattern/include/exclude）"""
    if flt is None:
        return True
    if flt.id_pattern and not re.search(flt.id_pattern, template_id):
        return False
    if flt.exclude and template_id in flt.exclude:
        return False
    if flt.include is not None and template_id not in flt.include:
        return False
    return True


class TemplateLoader(ABC):
    """加载器基类"""

    @abstractmethod
    async def load(self, template_id: str, options: Optional[LoadOptions] = None) -> Template:
        """
        加载模板

        Args:
            template_id: 模板ID
            options: 加载选项

        Returns:
            模板副本

        Raises:
            LoaderError: 模板不存在或无法解析
        """

    @abstractmethod
    async def save(self, template: Template) -> None:
        """保存模板"""

    @abstractmethod
    async def delete(self, template_id: str) -> None:
        """删除模板"""

    @abstractmethod
    async def list(self, flt: Optional[TemplateFilter] = None) -> List[str]:
        """列出模板ID"""

    @abstractmethod
    async def exists(self, template_id: str) -> bool:
        """检查模板是否存在"""

    def info(self) -> LoaderInfo:
        return LoaderInfo(type="custom", name=type(self).__name__)


class MemoryTemplateLoader(TemplateLoader):
    """
    内存模板加载器

    以持久化JSON格式保存模板，load 时解析回模板对象，保证调用方拿到的是副本。
    """

    def __init__(self, templates: Optional[List[Template]] = None):
        self._store: Dict[str, str] = {}
        for t in templates or []:
            self._store[t.id] = self._encode(t)

    async def load(self, template_id: str, options: Optional[LoadOptions] = None) -> Template:
        payload = self._store.get(template_id)
        if payload is None:
            raise LoaderError(f"Template {template_id} not found in memory", template_id=template_id)
        return template_from_json(payload, template_id)

    async def save(self, template: Template) -> None:
        if not template.id:
            raise LoaderError("Cannot save template without metadata.id")
        self._store[template.id] = self._encode(template)

    async def delete(self, template_id: str) -> None:
        self._store.pop(template_id, None)

    async def list(self, flt: Optional[TemplateFilter] = None) -> List[str]:
        ids: List[str] = []
        for template_id, payload in self._store.items():
            if not matches_id_filter(template_id, flt):
                continue
            if flt is not None and not matches_filter(template_from_json(payload, template_id), flt):
                continue
            ids.append(template_id)
        return ids

    async def exists(self, template_id: str) -> bool:
        return template_id in self._store

    def info(self) -> LoaderInfo:
        return LoaderInfo(
            type="memory",
            name="Memory Template Loader",
            description="Stores templates in memory",
            capabilities=["load", "save", "delete", "list"],
            config={"template_count": len(self._store)},
        )

    def clear(self) -> None:
        self._store.clear()

    def _encode(self, template: Template) -> str:
        try:
            return template_to_json(template, indent=None)
        except PydanticSerializationError as e:
            raise LoaderError(f"Failed to serialize template {template.id}: {e}", template_id=template.id) from e


@dataclass
class _Registration:
    name: str
    loader: TemplateLoader
    priority: int
    order: int


class CompositeTemplateLoader(TemplateLoader):
    """
    复合模板加载器

    - load: 按优先级从高到低，返回第一个 exists() 为真的加载器的结果
    - save/delete: 分发到所有加载器，单个加载器失败只记录日志
    - list: 合并所有加载器的结果
    """

    def __init__(self) -> None:
        self._registrations: List[_Registration] = []
        self._counter = 0

    def add_loader(self, loader: TemplateLoader, priority: int = 0, name: Optional[str] = None) -> str:
        name = name or f"{type(loader).__name__}-{self._counter}"
        self.remove_loader(name)
        self._registrations.append(_Registration(name, loader, priority, self._counter))
        self._counter += 1
        return name

    def remove_loader(self, name_or_loader: Any) -> bool:
        before = len(self._registrations)
        self._registrations = [
            r for r in self._registrations
            if r.name != name_or_loader and r.loader is not name_or_loader
        ]
        return len(self._registrations) != before

    def loaders(self) -> List[Tuple[str, TemplateLoader]]:
        ordered = sorted(self._registrations, key=lambda r: (-r.priority, r.order))
        return [(r.name, r.loader) for r in ordered]

    def __len__(self) -> int:
        return len(self._registrations)

    async def load(self, template_id: str, options: Optional[LoadOptions] = None) -> Template:
        for name, loader in self.loaders():
            try:
                found = await loader.exists(template_id)
            except Exception as e:
                logger.warning(f"Loader {name} failed to check existence of {template_id}: {e}")
                continue
            if found:
                return await loader.load(template_id, options)
        raise LoaderError(f"Template {template_id} not found in any loader", template_id=template_id)

    async def save(self, template: Template) -> None:
        await self._fan_out("save", template.id, lambda loader: loader.save(template))

    async def delete(self, template_id: str) -> None:
        await self._fan_out("delete", template_id, lambda loader: loader.delete(template_id))

    async def list(self, flt: Optional[TemplateFilter] = None) -> List[str]:
        seen: Dict[str, None] = {}
        for name, loader in self.loaders():
            try:
                for template_id in await loader.list(flt):
                    seen.setdefault(template_id, None)
            except Exception as e:
                logger.warning(f"Loader {name} failed to list templates: {e}")
        return list(seen)

    async def exists(self, template_id: str) -> bool:
        for name, loader in self.loaders():
            try:
                if await loader.exists(template_id):
                    return True
            except Exception as e:
                logger.warning(f"Loader {name} failed to check existence of {template_id}: {e}")
        return False

    def info(self) -> LoaderInfo:
        infos = [loader.info() for _, loader in self.loaders()]
        capabilities: Dict[str, None] = {}
        for i in infos:
            for c in i.capabilities:
                capabilities.setdefault(c, None)
        return LoaderInfo(
            type="composite",
            name="Composite Template Loader",
            description=f"Combines {len(infos)} loaders",
            capabilities=list(capabilities),
            config={
                "loaders": [{"name": r.name, "priority": r.priority} for r in self._registrations],
            },
        )

    async def _fan_out(self, action: str, template_id: str, call) -> List[str]:
        """
        Returns:
            失败的加载器名称
        """
        pairs = self.loaders()
        outcomes = await asyncio.gather(*(call(loader) for _, loader in pairs), return_exceptions=True)
        failed: List[str] = []
        for (name, _), outcome in zip(pairs, outcomes):
            if isinstance(outcome, Exception):
                failed.append(name)
                logger.warning(f"Loader {name} failed to {action} template {template_id}: {outcome}")
        return failed
