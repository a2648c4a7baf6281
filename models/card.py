import json
from enum import IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, validator

from parsers.clozes import BackType

class State(IntEnum):
    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3

class SpecialState(IntEnum):
    SUSPENDED = 1
    USER_BURIED = 2
    SCHEDULER_BURIED = 3

DEFAULT_DESIRED_RETENTION = 0.9

class CardBase(BaseModel):
    note_id: int
    order: int
    back_type: BackType = BackType.FULL_NOTE

class Card(CardBase):
    id: int
    created_at: int
    updated_at: int
    due: int
    stability: float = 0.0
    difficulty: float = 0.0
    desired_retention: float = DEFAULT_DESIRED_RETENTION
    special_state: Optional[SpecialState] = None
    state: State = State.NEW
    custom_data: Dict[str, Any] = {}

    class Config:
        from_attributes = True

    @classmethod
    def new(cls, note_id: int, order: int, back_type: BackType, created_at: int,
            card_id: int = 0) -> "Card":
        """A card that has never been reviewed, due as soon as it exists."""
        return cls(
            id=card_id,
            note_id=note_id,
            order=order,
            back_type=back_type,
            created_at=created_at,
            updated_at=created_at,
            due=created_at,
        )

    @classmethod
    def from_row(cls, row) -> "Card":
        data = dict(row)
        data["custom_data"] = json.loads(data.get("custom_data") or "{}")
        return cls(**data)

    def custom_data_json(self) -> str:
        return json.dumps(self.custom_data)

class CardUpdate(BaseModel):
    desired_retention: Optional[float] = None
    special_state: Optional[SpecialState] = None
    # Clears the special state when set
    clear_special_state: bool = False

    @validator('desired_retention')
    def validate_desired_retention(cls, v):
        if v is not None and not 0.0 < v < 1.0:
            raise ValueError("Desired retention must be between 0 and 1")
        return v
