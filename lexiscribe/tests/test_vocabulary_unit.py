from lexiscribe.asr.models import ChunkResult
from lexiscribe.asr.vocabulary import merge_vocabulary


def _result(*words: str) -> ChunkResult:
    return ChunkResult.model_validate(
        {"vocabulary": [{"word": w, "definition": f"def of {w.strip()}"} for w in words]}
    )


def test_merge_vocabulary_keeps_first_occurrence_case_insensitively() -> None:
    merged = merge_vocabulary(
        [
            _result("Serendipity", "ubiquitous"),
            _result(" serendipity ", "Paradigm"),
            _result("UBIQUITOUS"),
        ]
    )

    assert [item.word for item in merged] == ["Serendipity", "ubiquitous", "Paradigm"]
    assert merged[0].definition == "def of Serendipity"


def test_merge_vocabulary_skips_blank_words_and_empty_chunks() -> None:
    merged = merge_vocabulary([_result("", "  "), ChunkResult.empty(), _result("nuance")])

    assert [item.word for item in merged] == ["nuance"]


def test_merge_vocabulary_follows_chunk_order() -> None:
    first = merge_vocabulary([_result("alpha"), _result("beta")])
    second = merge_vocabulary([_result("beta"), _result("alpha")])

    assert [item.word for item in first] == ["alpha", "beta"]
    assert [item.word for item in second] == ["beta", "alpha"]
