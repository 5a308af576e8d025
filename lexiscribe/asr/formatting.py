from __future__ import annotations

"""
Render a transcription result as readable bilingual text.

Design intent:
- Keep text output deterministic for the same result.
- One block per line: timestamp, speaker, English, then the indented translation.
"""

from lexiscribe.asr.models import TranscriptionResult, TranscriptLine


def format_timestamp(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _format_line(line: TranscriptLine) -> list[str]:
    speaker = line.speaker.strip() or "Speaker"
    english = " ".join(line.english.split())
    out = [f"[{format_timestamp(line.start_time_in_seconds)}] {speaker}: {english}"]
    chinese = " ".join(line.chinese.split())
    if chinese:
        out.append(f"    {chinese}")
    return out


def format_for_display(result: TranscriptionResult, *, include_vocabulary: bool = False) -> str:
    if not result.transcript and not (include_vocabulary and result.vocabulary):
        return ""

    blocks: list[str] = []
    for line in result.transcript:
        blocks.extend(_format_line(line))

    if include_vocabulary and result.vocabulary:
        blocks.append("")
        blocks.append("Vocabulary")
        for item in result.vocabulary:
            ipa = f" {item.ipa.strip()}" if item.ipa.strip() else ""
            blocks.append(f"- {item.word.strip()}{ipa}: {item.definition.strip()}")
    return "\n".join(blocks)
