from enum import Enum

from .card import Card, CardUpdate, SpecialState, State, BackType
from .note import Note, NoteCreate, NoteUpdate, NoteResponse, NoteLink
from .review import (ReviewLog, ReviewLogCreate, Rating, StudyAction, StudyActionKind, ReviewCard,
                     Statistics)
from .tag import Tag, TagCreate, TagUpdate
from .parser import Parser

class ReturnType(str, Enum):
    CARDS = "cards"
    NOTES = "notes"

__all__ = ['Card', 'CardUpdate', 'SpecialState', 'State', 'BackType', 'Note', 'NoteCreate',
           'NoteUpdate', 'NoteResponse', 'NoteLink', 'ReviewLog', 'ReviewLogCreate', 'Rating',
           'StudyAction', 'StudyActionKind', 'ReviewCard', 'Statistics', 'Tag', 'TagCreate',
           'TagUpdate', 'Parser', 'ReturnType']
