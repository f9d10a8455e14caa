"""
schemas/table.py
----------------
Pydantic models for class-scoped realtime requests.

Field names follow the wire format of the browser client (camelCase);
Python code uses the snake_case attributes.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ClassRequest(BaseModel):
    """Any request scoped to one class database."""
    class_name: str = Field(
        ...,
        alias="className",
        min_length=1,
        max_length=255,
        examples=["6e B"],
        description="Free-text class name; identifies the class database",
    )

    model_config = {"populate_by_name": True}

    @field_validator("class_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("class name must not be blank")
        return v


class SheetRequest(ClassRequest):
    sheet_name: str = Field(
        ...,
        alias="sheetName",
        min_length=1,
        max_length=255,
        examples=["Mathématiques"],
    )


class SaveTableRequest(SheetRequest):
    data: Any = Field(..., description="Opaque sheet payload, replaced wholesale")

    @field_validator("data")
    @classmethod
    def has_data(cls, v: Any) -> Any:
        if v is None or v == "":
            raise ValueError("data is required")
        return v


class DeleteSubjectRequest(SheetRequest):
    pass
