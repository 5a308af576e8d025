from lexiscribe.asr.formatting import format_for_display, format_timestamp
from lexiscribe.asr.models import TranscriptionResult


def test_format_timestamp_switches_to_hours() -> None:
    assert format_timestamp(0) == "00:00"
    assert format_timestamp(62.9) == "01:02"
    assert format_timestamp(3723) == "1:02:03"
    assert format_timestamp(-5) == "00:00"


def test_format_for_display_renders_bilingual_blocks() -> None:
    result = TranscriptionResult.model_validate(
        {
            "transcript": [
                {"speaker": "HOST", "english": "Good  evening.", "chinese": "晚安。", "startTimeInSeconds": 5},
                {"speaker": "", "english": "Thanks.", "chinese": "", "startTimeInSeconds": 65},
            ],
            "vocabulary": [{"word": "evening", "ipa": "/ˈiːvnɪŋ/", "definition": "the end of the day"}],
        }
    )

    text = format_for_display(result)

    assert text.splitlines() == [
        "[00:05] HOST: Good evening.",
        "    晚安。",
        "[01:05] Speaker: Thanks.",
    ]
    with_vocab = format_for_display(result, include_vocabulary=True)
    assert with_vocab.splitlines()[-1] == "- evening /ˈiːvnɪŋ/: the end of the day"


def test_format_for_display_empty_result() -> None:
    assert format_for_display(TranscriptionResult()) == ""
