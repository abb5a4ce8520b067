from pydantic import BaseModel
from typing import Any, Dict


class CvarUpdate(BaseModel):
    value: Any


class CvarResponse(BaseModel):
    name: str
    value: Any


class CvarList(BaseModel):
    cvars: Dict[str, Any]
