import json
from datetime import date
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, validator

from .card import Card, State

class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

class ReviewLogCreate(BaseModel):
    card_id: int
    reviewed_at: int
    rating: int
    scheduler_name: str
    scheduled_time: int
    duration: int
    previous_state: State
    custom_data: Dict[str, Any] = {}

    @validator('rating')
    def validate_rating(cls, v):
        if v not in Rating._value2member_map_:
            raise ValueError("Rating must be 1 (again), 2 (hard), 3 (good) or 4 (easy)")
        return v

class ReviewLog(ReviewLogCreate):
    id: int

    class Config:
        from_attributes = True

    @classmethod
    def from_row(cls, row) -> "ReviewLog":
        data = dict(row)
        data["custom_data"] = json.loads(data.get("custom_data") or "{}")
        return cls(**data)

class StudyActionKind(str, Enum):
    RATE = "rate"
    BURY = "bury"
    ADVANCE = "advance"
    POSTPONE = "postpone"
    RESCHEDULE = "reschedule"

class StudyAction(BaseModel):
    kind: StudyActionKind
    card_id: Optional[int] = None
    rating: Optional[Rating] = None
    duration: int = 0
    # Filtered tag being studied, if any
    tag_id: Optional[int] = None
    count: Optional[int] = None
    query: Optional[str] = None

    @validator('count')
    def validate_count(cls, v):
        if v is not None and v < 1:
            raise ValueError("Count must be positive")
        return v

class ReviewCard(BaseModel):
    card: Card
    parser_name: str
    front_file: str
    # The note file when the back shows the full note
    back_file: str

class Statistics(BaseModel):
    cards_studied_count: int
    study_time: int
    card_count_by_state: Dict[State, int]
    due_count_by_state: Dict[State, int]
    due_count_by_date: Dict[date, int]
    advance_safe_count: int
    postpone_safe_count: int
