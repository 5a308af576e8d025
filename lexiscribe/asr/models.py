from __future__ import annotations

"""
Typed transcript contracts shared by the oracle, reconciler and API layers.

Design intent:
- Accept the oracle's camelCase JSON as-is; timestamps go through the time converter.
- Keep the empty chunk result an ordinary value, never an error.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lexiscribe.asr.time_convert import parse_time_to_seconds


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class TranscriptLine(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    speaker: str = ""
    english: str = ""
    chinese: str = ""
    start_time_in_seconds: float = Field(default=0.0, alias="startTimeInSeconds")
    end_time_in_seconds: float = Field(default=0.0, alias="endTimeInSeconds")

    @field_validator("speaker", "english", "chinese", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("start_time_in_seconds", "end_time_in_seconds", mode="before")
    @classmethod
    def _coerce_seconds(cls, value: Any) -> float:
        return parse_time_to_seconds(value)

    def shifted(self, offset_sec: float) -> "TranscriptLine":
        return self.model_copy(
            update={
                "start_time_in_seconds": self.start_time_in_seconds + offset_sec,
                "end_time_in_seconds": self.end_time_in_seconds + offset_sec,
            }
        )


class VocabularyItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    word: str = ""
    ipa: str = ""
    definition: str = ""
    example: str = ""

    @field_validator("word", "ipa", "definition", "example", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    def key(self) -> str:
        return self.word.strip().lower()


class ChunkResult(BaseModel):
    """Chunk-local oracle output. Timestamps start at 0.0 for the chunk."""

    model_config = ConfigDict(extra="ignore")

    transcript: list[TranscriptLine] = Field(default_factory=list)
    vocabulary: list[VocabularyItem] = Field(default_factory=list)

    @field_validator("transcript", "vocabulary", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @classmethod
    def empty(cls) -> "ChunkResult":
        return cls(transcript=[], vocabulary=[])

    def is_empty(self) -> bool:
        return not self.transcript and not self.vocabulary


class TranscriptionResult(BaseModel):
    """Global transcript (sorted by start) and case-insensitively unique vocabulary."""

    model_config = ConfigDict(frozen=True)

    transcript: list[TranscriptLine] = Field(default_factory=list)
    vocabulary: list[VocabularyItem] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
