"""
Request models for the billing, generation and publish endpoints
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal

from .services.generation_client import COLUMN_TYPES


class CheckBillingStatusRequest(BaseModel):
    """Billing pre-flight for a planned batch"""
    collection_id: int = Field(..., description="Internal collection id")
    field_count: int = Field(..., ge=0, description="Number of generations the batch will run")


class CheckoutRequestBody(BaseModel):
    """Start a checkout for the paid part of a batch"""
    collection_id: int = Field(..., description="Internal collection id")
    item_ids: List[str] = Field(..., min_length=1, description="External item ids to generate for")
    item_count: Optional[int] = Field(None, ge=1, description="Defaults to len(item_ids)")
    collection_name: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="after")
    def validate_item_count(self):
        """item_count, when given, must agree with item_ids"""
        if self.item_count is not None and self.item_count != len(self.item_ids):
            raise ValueError(
                f"item_ids length ({len(self.item_ids)}) does not match item_count ({self.item_count})"
            )
        return self


class GenerateItem(BaseModel):
    id: str = Field(..., min_length=1)
    field_data: Dict[str, Any] = Field(default_factory=dict)


class GenerateFieldsRequest(BaseModel):
    """Generate AI content for (item x field) pairs"""
    collection_id: int
    items: List[GenerateItem] = Field(..., min_length=1)
    fields: List[str] = Field(..., min_length=1)
    column_types: Dict[str, str] = Field(default_factory=dict)
    payment_id: Optional[int] = Field(None, description="Paid checkout covering the units beyond the free tier")

    @field_validator("column_types")
    @classmethod
    def validate_column_types(cls, v):
        for field_name, column_type in v.items():
            if column_type not in COLUMN_TYPES:
                raise ValueError(f"Unsupported column type '{column_type}' for field {field_name}")
        return v


class StagedFieldModel(BaseModel):
    kind: Literal["text", "image"]
    value: str
    file_name: Optional[str] = None


class PublishRequest(BaseModel):
    """Staged edits keyed by item id, then field name"""
    collection_id: int
    changes: Dict[str, Dict[str, StagedFieldModel]]

    @field_validator("changes")
    @classmethod
    def validate_changes(cls, v):
        if not v:
            raise ValueError("changes must contain at least one item")
        return v
