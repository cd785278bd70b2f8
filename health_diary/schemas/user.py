"""Pydantic schemas for user preference endpoints."""

from typing import Literal

from pydantic import BaseModel

from health_diary.models.user import TONES, TOPICS

Tone = Literal[TONES]
Topic = Literal[TOPICS]


class PreferencesResponse(BaseModel):
    interaction_style: str
    topics: list[str]


class PreferencesUpdate(BaseModel):
    interaction_style: Tone | None = None
    topics: list[Topic] | None = None
