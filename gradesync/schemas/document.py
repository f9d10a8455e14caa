"""
schemas/document.py
-------------------
Pydantic models for document conversion requests.

The document travels as base64 inside the JSON frame. "docxBuffer" is
the field name older clients still send.
"""

from pydantic import AliasChoices, Base64Bytes, BaseModel, Field


class GeneratePdfRequest(BaseModel):
    document: Base64Bytes = Field(
        ...,
        validation_alias=AliasChoices("document", "docxBuffer"),
        description="Base64-encoded DOCX bytes",
    )
    file_name: str = Field(
        "document.docx",
        validation_alias=AliasChoices("fileName", "file_name"),
        max_length=255,
    )
