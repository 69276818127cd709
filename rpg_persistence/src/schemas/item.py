"""
Pydantic models for the item catalog, inventory slots and equipment slots.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ItemRecord(BaseModel):
    """Static item definition."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: str
    tier: Optional[str] = None
    stackable: bool = False
    attack_level: Optional[int] = None
    strength_level: Optional[int] = None
    defense_level: Optional[int] = None
    ranged_level: Optional[int] = None
    attack_bonus: int = 0
    strength_bonus: int = 0
    defense_bonus: int = 0
    ranged_bonus: int = 0
    heals: Optional[int] = None
    item_metadata: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")


class InventorySlot(BaseModel):
    """
    One occupied inventory slot.

    Zero-quantity slots are accepted here and dropped by the store on write.
    """

    model_config = ConfigDict(from_attributes=True)

    slot_index: int = Field(..., ge=0)
    item_id: int
    quantity: int = Field(1, ge=0)
    item_data: Optional[Dict[str, Any]] = None
    item_name: Optional[str] = None


class EquipmentSlotData(BaseModel):
    """Item held in a named equipment slot."""

    model_config = ConfigDict(from_attributes=True)

    item_id: int
    quantity: int = Field(1, ge=1)
    item_data: Optional[Dict[str, Any]] = None
    item_name: Optional[str] = None
