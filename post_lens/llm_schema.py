from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


ANALYSIS_SCHEMA_NAME = "post_lens_pattern_analysis"
REWRITE_SCHEMA_NAME = "post_lens_rewrite_outputs"

PATTERN_TYPES: tuple[str, ...] = (
    "empathy_story",
    "useful_info",
    "bullet_list",
    "authority_appeal",
    "question",
    "provocative",
    "other",
)

DEFAULT_REWRITE_PATTERNS: tuple[str, ...] = ("empathy_story", "useful_info")

# NOTE: These schemas are hand-authored to stay within the subset of JSON Schema
# required by Structured Outputs and to keep them stable across Pydantic changes.
ANALYSIS_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "pattern_type": {"type": "string", "enum": list(PATTERN_TYPES)},
        "analysis": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "hook": {"type": "string"},
                "structure": {"type": "string"},
                "keywords": {"type": "array", "items": {"type": "string"}},
                "emotional_triggers": {"type": "array", "items": {"type": "string"}},
                "strength_points": {"type": "array", "items": {"type": "string"}},
            },
            "required": [
                "hook",
                "structure",
                "keywords",
                "emotional_triggers",
                "strength_points",
            ],
        },
    },
    "required": ["pattern_type", "analysis"],
}

REWRITE_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "outputs": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "pattern_type": {"type": "string"},
                    "content": {"type": "string"},
                },
                "required": ["pattern_type", "content"],
            },
        },
    },
    "required": ["outputs"],
}


class PatternFeatures(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    hook: str
    structure: str
    keywords: list[str]
    emotional_triggers: list[str]
    strength_points: list[str]


class PostAnalysis(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Free-form here so the fallback value needs no enum member.
    pattern_type: str
    analysis: PatternFeatures

    def to_payload(self) -> dict[str, Any]:
        return {
            "patternType": self.pattern_type,
            "analysis": {
                "hook": self.analysis.hook,
                "structure": self.analysis.structure,
                "keywords": list(self.analysis.keywords),
                "emotionalTriggers": list(self.analysis.emotional_triggers),
                "strengthPoints": list(self.analysis.strength_points),
            },
        }


class RewriteOutput(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    pattern_type: str
    content: str

    @property
    def character_count(self) -> int:
        return len(self.content)

    def to_payload(self) -> dict[str, Any]:
        return {
            "patternType": self.pattern_type,
            "content": self.content,
            "characterCount": self.character_count,
        }


class RewriteResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    outputs: list[RewriteOutput]


FALLBACK_ANALYSIS = PostAnalysis(
    pattern_type="unavailable",
    analysis=PatternFeatures(
        hook="Could not be analyzed",
        structure="Could not be analyzed",
        keywords=[],
        emotional_triggers=[],
        strength_points=[],
    ),
)

FALLBACK_REWRITE = RewriteResult(
    outputs=[
        RewriteOutput(
            pattern_type="generation_failed",
            content="Post generation failed. Please try again.",
        )
    ]
)
