"""
schemas/selection.py
--------------------
Pydantic models for per-cell selections.
"""

from typing import Any

from pydantic import Field

from gradesync.schemas.table import SheetRequest


class SaveSelectionRequest(SheetRequest):
    cell_key: str = Field(..., alias="cellKey", min_length=1, max_length=255)
    unit: Any = None
    resources: Any = None
