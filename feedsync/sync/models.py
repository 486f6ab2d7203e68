"""
Catalog snapshot types shared by the diff engine, the feed adapter and the
delta publisher.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class SyncAction(str, Enum):
    """What a diff decided for an entity."""
    NEW = "new"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class VariantSnapshot:
    """One size of an entity as seen in the feed."""

    size_key: str
    price: Decimal
    available_quantity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size_key,
            "price": str(self.price),
            "quantity": self.available_quantity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantSnapshot":
        if not isinstance(data, dict):
            raise TypeError(f"Variant must be an object, got {data!r}")
        return cls(
            size_key=str(data["size"]),
            price=Decimal(str(data.get("price") or "0")),
            available_quantity=int(data.get("quantity") or 0),
        )


@dataclass(frozen=True)
class EntitySnapshot:
    """
    A catalog product as seen in the feed.

    `id` is the stable external SKU / style code. `source_id` (the feed's
    internal id) and `action` are bookkeeping and never part of the
    signature.
    """

    id: Optional[str]
    display_name: str = ""
    brand_name: str = ""
    primary_image_url: Optional[str] = None
    variants: List[VariantSnapshot] = field(default_factory=list)
    source_id: Optional[str] = None
    action: Optional[SyncAction] = None

    def with_action(self, action: SyncAction) -> "EntitySnapshot":
        return replace(self, action=action)

    def out_of_stock(self) -> "EntitySnapshot":
        """Copy with every variant's quantity forced to 0."""
        return replace(
            self,
            variants=[replace(v, available_quantity=0) for v in self.variants],
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sku": self.id,
            "name": self.display_name,
            "brand": self.brand_name,
            "image": self.primary_image_url,
            "variants": [v.to_dict() for v in self.variants],
        }
        if self.source_id:
            data["source_id"] = self.source_id
        if self.action:
            data["_action"] = self.action.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntitySnapshot":
        if not isinstance(data, dict):
            raise TypeError(f"Product must be an object, got {data!r}")
        action = data.get("_action")
        return cls(
            id=data.get("sku") or None,
            display_name=data.get("name") or "",
            brand_name=data.get("brand") or "",
            primary_image_url=data.get("image"),
            variants=[VariantSnapshot.from_dict(v) for v in data.get("variants") or []],
            source_id=data.get("source_id"),
            action=SyncAction(action) if action else None,
        )


@dataclass
class DiffResult:
    """Outcome of comparing the current feed against the baseline."""

    added: List[EntitySnapshot] = field(default_factory=list)
    updated: List[EntitySnapshot] = field(default_factory=list)
    removed: List[EntitySnapshot] = field(default_factory=list)
    unchanged_count: int = 0
    skipped_count: int = 0

    @property
    def changed(self) -> List[EntitySnapshot]:
        return [*self.added, *self.updated, *self.removed]

    @property
    def total_changes(self) -> int:
        return len(self.added) + len(self.updated) + len(self.removed)
