"""Structured outputs the gateway validates model responses against.

Models emit camelCase keys; attributes stay snake_case.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Annotated, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from llm_gateway.domain.models import Task

CefrLevel = Literal["A1", "A2", "B1", "B2", "C1", "C2"]
CefrTarget = Literal["A1", "A2", "B1", "B2", "C1"]
QuestionType = Literal["multiple_choice", "translation", "fill_blank"]


class LLMOutput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuizQuestion(LLMOutput):
    prompt: str
    options: list[str] = Field(min_length=4, max_length=4)
    correct_index: int = Field(ge=0, le=3)
    explanation: str


class QuizOutput(LLMOutput):
    questions: list[QuizQuestion] = Field(min_length=3, max_length=6)


class AssessmentQuestion(LLMOutput):
    question: str
    type: QuestionType
    options: list[str] | None
    cefr_target: CefrTarget


class LevelAssessmentOutput(LLMOutput):
    language: str
    questions: list[AssessmentQuestion] = Field(min_length=1)
    instructions: str


class DiagnoseResult(LLMOutput):
    cefr_level: Literal["A0", "A1", "A2", "B1", "B2", "C1", "C2"]
    explanation: str


class RoadmapNode(LLMOutput):
    sort_order: int
    title: str
    description: str
    node_type: Literal["lesson", "quiz", "practice", "review"]
    est_minutes: int = Field(ge=1)
    skills: list[str]


class RoadmapOutput(LLMOutput):
    title: str
    estimated_weeks: float
    nodes: list[RoadmapNode] = Field(min_length=1)


class GradingOutput(LLMOutput):
    score: float = Field(ge=0, le=1)
    passed: bool
    feedback: str
    strengths: list[str]
    improvements: list[str]
    rationale: str


class OnboardingCollected(LLMOutput):
    language: str | None
    target_level: CefrLevel | None
    minutes_per_day: Annotated[int, Field(ge=1)] | None
    days_per_week: Annotated[int, Field(ge=1, le=7)] | None
    deadline: str | None
    motivation: str | None


class OnboardingChatOutput(LLMOutput):
    assistant_message: str
    collected: OnboardingCollected
    next_action: Literal["ask_more", "start_diagnostic"]


TASK_OUTPUT_SCHEMAS: Mapping[Task, type[LLMOutput]] = MappingProxyType(
    {
        "onboarding_chat": OnboardingChatOutput,
        "level_assessment": LevelAssessmentOutput,
        "roadmap_generation": RoadmapOutput,
        "roadmap_adaptation": RoadmapOutput,
        "quiz_generation": QuizOutput,
        "artifact_grading": GradingOutput,
    }
)


__all__ = [
    "AssessmentQuestion",
    "DiagnoseResult",
    "GradingOutput",
    "LLMOutput",
    "LevelAssessmentOutput",
    "OnboardingChatOutput",
    "OnboardingCollected",
    "QuizOutput",
    "QuizQuestion",
    "RoadmapNode",
    "RoadmapOutput",
    "TASK_OUTPUT_SCHEMAS",
]
