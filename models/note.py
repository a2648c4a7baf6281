import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator

class NoteBase(BaseModel):
    data: str
    keywords: List[str] = []
    custom_data: Dict[str, Any] = {}

class NoteCreate(NoteBase):
    parser_name: str
    tags: List[str] = []
    is_suspended: bool = False

    @validator('data')
    def validate_data(cls, v):
        if not v.strip():
            raise ValueError("Note data cannot be empty")
        return v

class NoteUpdate(BaseModel):
    data: Optional[str] = None
    parser_name: Optional[str] = None
    keywords: Optional[List[str]] = None
    custom_data: Optional[Dict[str, Any]] = None
    # `*` removes every manual tag
    tags_to_add: List[str] = []
    tags_to_remove: List[str] = []
    is_suspended: Optional[bool] = None

class Note(NoteBase):
    id: int
    parser_id: int
    created_at: int
    updated_at: int

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row) -> "Note":
        data = dict(row)
        data["keywords"] = [k for k in (data.get("keywords") or "").split(",") if k]
        data["custom_data"] = json.loads(data.get("custom_data") or "{}")
        return cls(**data)

class NoteResponse(Note):
    parser_name: str
    tags: List[str] = []
    card_count: int = 0

class NoteLink(BaseModel):
    parent_note_id: int
    linked_note_id: Optional[int] = None
    order: int
    searched_keyword: str
    matched_keyword: Optional[str] = None

    class Config:
        from_attributes = True
