"""
draftroom.catalog.loader
~~~~~~~~~~~~~~~~~~~~~~~~

选秀池目录加载器 —— 进程启动时把 CSV 表格解析为有序的 ``Item`` 序列。

目录在进程生命周期内只读，所有房间共享同一份（无需加锁）。
任何无法解析的情况都抛出 ``CatalogError``，由启动流程决定拒绝启动。
"""
from __future__ import annotations

import csv
from pathlib import Path

from draftroom.core.logging import get_logger
from draftroom.schemas.room import Item

logger = get_logger(__name__)


class CatalogError(Exception):
    """目录文件缺失、为空或格式不正确。"""


class CatalogLoader:
    """CSV 目录加载器。

    Attributes:
        name_column: 名称列（唯一键）。
        category_column: 分类列。
        team_column: 队伍列。
    """

    def __init__(
        self,
        name_column: str = "PLAYER NAME",
        category_column: str = "POS",
        team_column: str = "TEAM",
    ) -> None:
        self.name_column = name_column
        self.category_column = category_column
        self.team_column = team_column

    def load_file(self, file_path: str | Path) -> tuple[Item, ...]:
        """加载 CSV 文件并返回按文件顺序排列的条目。

        Args:
            file_path: 文件路径（绝对或相对）。

        Returns:
            条目元组，顺序与文件行顺序一致。

        Raises:
            CatalogError: 文件不可读、缺少名称列、没有任何条目或名称重复。
        """
        path = Path(file_path)
        try:
            raw: str = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise CatalogError(f"无法读取目录文件 {path}: {e}") from e

        items = self.parse(raw.splitlines(), source=str(path))
        logger.info("✅ 已加载选秀池目录 %s | 共 %d 条", path, len(items))
        return items

    def parse(self, lines: list[str], source: str = "<memory>") -> tuple[Item, ...]:
        """解析 CSV 文本行。跳过名称为空的行（常见于文件末尾的空行）。"""
        reader = csv.DictReader(lines)
        if reader.fieldnames is None or self.name_column not in reader.fieldnames:
            raise CatalogError(f"目录 {source} 缺少名称列 {self.name_column!r}")

        items: list[Item] = []
        seen: set[str] = set()
        for row in reader:
            name = (row.get(self.name_column) or "").strip()
            if not name:
                continue
            if name in seen:
                raise CatalogError(f"目录 {source} 中名称重复: {name!r}")
            seen.add(name)
            items.append(self._to_item(name, row))

        if not items:
            raise CatalogError(f"目录 {source} 中没有任何条目")
        return tuple(items)

    def _to_item(self, name: str, row: dict[str, str | None]) -> Item:
        # 多余的列（DictReader 把它们放在 None 键下）直接丢弃
        attributes = {
            key: (value or "").strip()
            for key, value in row.items()
            if key is not None
            and key not in (self.name_column, self.category_column, self.team_column)
        }
        return Item(
            name=name,
            category=(row.get(self.category_column) or "").strip(),
            team=(row.get(self.team_column) or "").strip(),
            attributes=attributes,
        )


def load_catalog(
    file_path: str | Path,
    name_column: str = "PLAYER NAME",
    category_column: str = "POS",
    team_column: str = "TEAM",
) -> tuple[Item, ...]:
    """便捷函数：按给定列名加载目录。"""
    loader = CatalogLoader(
        name_column=name_column,
        category_column=category_column,
        team_column=team_column,
    )
    return loader.load_file(file_path)
