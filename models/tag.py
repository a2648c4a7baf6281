from typing import Optional

from pydantic import BaseModel, validator

DEFAULT_TAG_AUTO_DELETE = True

class TagBase(BaseModel):
    name: str
    description: str = ""
    parent_id: Optional[int] = None
    # Set for filtered tags
    query: Optional[str] = None
    auto_delete: bool = DEFAULT_TAG_AUTO_DELETE

    @validator('name')
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Tag name cannot be empty")
        return v

class TagCreate(TagBase):
    pass

class TagUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    parent_id: Optional[int] = None
    query: Optional[str] = None
    # Turns a filtered tag back into a manual one
    clear_query: bool = False
    auto_delete: Optional[bool] = None

class Tag(TagBase):
    id: int

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row) -> "Tag":
        return cls(**dict(row))

    @property
    def is_filtered(self) -> bool:
        return self.query is not None
