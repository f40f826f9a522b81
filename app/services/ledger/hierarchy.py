"""
Activity hierarchy value objects.

The hierarchy is reference data produced by the hierarchy service
(app/services/hierarchy_service.py); the ledger only reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from app.services.ledger.codes import normalize_formula


@dataclass(frozen=True)
class Activity:
    code: str
    name: str
    section: str
    sub_category_code: str | None = None
    display_order: int = 0
    is_total_row: bool = False
    is_computed: bool = False
    computation_formula: str | None = None

    @property
    def formula(self) -> str | None:
        return normalize_formula(self.computation_formula)

    @property
    def is_leaf(self) -> bool:
        """Data-bearing row: neither a total nor computed."""
        return not (self.is_total_row or self.is_computed)

    @classmethod
    def from_dict(cls, data: dict) -> "Activity":
        return cls(
            code=data["code"],
            name=data.get("name", ""),
            section=data["section"],
            sub_category_code=data.get("sub_category_code") or data.get("subCategoryCode"),
            display_order=int(data.get("display_order", data.get("displayOrder", 0)) or 0),
            is_total_row=bool(data.get("is_total_row", data.get("isTotalRow", False))),
            is_computed=bool(data.get("is_computed", data.get("isComputed", False))),
            computation_formula=data.get("computation_formula") or data.get("computationFormula"),
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "section": self.section,
            "subCategoryCode": self.sub_category_code,
            "displayOrder": self.display_order,
            "isTotalRow": self.is_total_row,
            "isComputed": self.is_computed,
            "computationFormula": self.computation_formula,
        }


@dataclass(frozen=True)
class SubCategory:
    code: str
    name: str
    display_order: int = 0
    activities: tuple[Activity, ...] = ()

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "displayOrder": self.display_order,
            "items": [a.to_dict() for a in self.activities],
        }


@dataclass(frozen=True)
class Category:
    code: str
    name: str
    display_order: int = 0
    is_computed: bool = False
    sub_categories: tuple[SubCategory, ...] = ()
    activities: tuple[Activity, ...] = field(default=())

    def iter_activities(self) -> Iterator[Activity]:
        for sub in self.sub_categories:
            yield from sub.activities
        yield from self.activities

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "displayOrder": self.display_order,
            "isComputed": self.is_computed,
            "subCategories": [s.to_dict() for s in self.sub_categories],
            "items": [a.to_dict() for a in self.activities],
        }


def iter_activities(hierarchy: Iterable[Category]) -> Iterator[Activity]:
    for category in hierarchy:
        yield from category.iter_activities()


def activities_by_code(hierarchy: Iterable[Category]) -> dict[str, Activity]:
    return {a.code: a for a in iter_activities(hierarchy)}


def find_category(hierarchy: Iterable[Category], section: str) -> Category | None:
    for category in hierarchy:
        if category.code == section:
            return category
    return None


def leaf_activities(hierarchy: Iterable[Category], section: str | None = None) -> list[Activity]:
    return [
        a for a in iter_activities(hierarchy)
        if a.is_leaf and (section is None or a.section == section)
    ]
