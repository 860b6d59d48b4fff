"""Defect codes attached to an in-progress recording."""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from ..models import DefectCode

__all__ = ["NO_DEFECT", "DefectSelection", "split_ng_quantity"]

NO_DEFECT = "no_defect"


def split_ng_quantity(ng: int, defect_ids: list[int]) -> list[dict[str, int]]:
    """Spread ``ng`` evenly over ``defect_ids``.

    Each defect gets ``ng // len(defect_ids)``; the remainder is dropped, so
    the reported defect total can be lower than ``ng``.
    """

    if ng <= 0 or not defect_ids:
        return []
    share = ng // len(defect_ids)
    return [{"defect_code_id": defect_id, "qty": share} for defect_id in defect_ids]


class DefectSelection:
    """Ordered set of distinct defect codes, keyed by id."""

    def __init__(self, defects: Iterable[DefectCode] = ()):
        self._items: dict[int, DefectCode] = {}
        for defect in defects:
            self.add(defect)

    def __iter__(self) -> Iterator[DefectCode]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, defect_id: object) -> bool:
        return defect_id in self._items

    @property
    def ids(self) -> list[int]:
        return list(self._items)

    def add(self, defect: DefectCode) -> bool:
        """Append ``defect``; returns ``False`` when it was already selected."""

        if defect.id in self._items:
            return False
        self._items[defect.id] = defect
        return True

    def select(self, choice: str, available: Iterable[DefectCode]) -> DefectCode | None:
        """Apply a pick from the defect list.

        ``NO_DEFECT`` clears the selection. Unknown ids are ignored.
        """

        if choice == NO_DEFECT:
            self.clear()
            return None
        for defect in available:
            if str(defect.id) == str(choice):
                self.add(defect)
                return defect
        return None

    def remove(self, defect_id: int) -> None:
        self._items.pop(defect_id, None)

    def clear(self) -> None:
        self._items.clear()

    def allocate(self, ng: int) -> list[dict[str, int]]:
        return split_ng_quantity(ng, self.ids)

    def to_list(self) -> list[dict[str, Any]]:
        return [defect.model_dump() for defect in self._items.values()]
