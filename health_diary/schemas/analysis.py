"""Pydantic schema of the structured analysis returned for a transcript."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TopicAnalysis(BaseModel):
    mentioned: bool
    data: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)


class HealthFlags(BaseModel):
    concerning_symptoms: list[str] = Field(default_factory=list)
    positive_trends: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class AnalysisMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    word_count: int | None = None
    key_themes: list[str] = Field(default_factory=list)
    emotional_tone: str | None = None


class StructuredAnalysis(BaseModel):
    """Summary, per-topic breakdown and health flags for one entry."""

    summary: str
    subjects: dict[str, TopicAnalysis]
    missing_subjects: list[str] = Field(default_factory=list)
    health_flags: HealthFlags
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
