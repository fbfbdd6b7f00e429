"""Tests for the LLM relevance grader."""

from __future__ import annotations

import logging

import pytest

from docket.db.models import TextRecord
from docket.rag.grader import GraderConfig, RelevanceGrader, parse_grade


class FakeCompletion:
    """Returns canned answers in order and records every call."""

    def __init__(self, *answers: str) -> None:
        self.calls: list[dict] = []
        self._answers = list(answers)

    def __call__(self, **kwargs) -> str:
        self.calls.append(kwargs)
        return self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]


def _record(text: str) -> TextRecord:
    return TextRecord(kind="agenda", text=text)


# ------------------------------------------------------------------
# parse_grade
# ------------------------------------------------------------------


@pytest.mark.parametrize("raw,expected", [
    ("relevant", "relevant"),
    ("  Partial\n", "partial"),
    ("IRRELEVANT.", "irrelevant"),
    ('"relevant"', "relevant"),
    ("unsure", None),
    ("relevant, mostly", None),
    ("", None),
])
def test_parse_grade(raw, expected):
    assert parse_grade(raw) == expected


# ------------------------------------------------------------------
# is_relevant
# ------------------------------------------------------------------


@pytest.mark.parametrize("answer,expected", [
    ("relevant", True),
    ("partial", True),
    ("irrelevant", False),
])
def test_is_relevant_maps_grades(answer, expected):
    grader = RelevanceGrader(complete_fn=FakeCompletion(answer))
    assert grader.is_relevant("Was the rezoning approved?", "The council approved it.") is expected


def test_unparseable_answer_defaults_to_false_and_logs(caplog):
    grader = RelevanceGrader(complete_fn=FakeCompletion("unsure"))
    with caplog.at_level(logging.WARNING):
        assert grader.is_relevant("question", "document") is False
    assert "Unparseable relevance grade" in caplog.text


def test_grading_call_uses_temperature_zero_and_model():
    completion = FakeCompletion("relevant")
    grader = RelevanceGrader(GraderConfig(model="anthropic/claude-3-5-haiku-20241022"), completion)
    grader.is_relevant("question", "document")

    call = completion.calls[0]
    assert call["temperature"] == 0
    assert call["model"] == "anthropic/claude-3-5-haiku-20241022"
    assert [m["role"] for m in call["messages"]] == ["system", "user"]
    assert "question" in call["messages"][1]["content"]


def test_document_truncated_in_prompt():
    completion = FakeCompletion("relevant")
    grader = RelevanceGrader(GraderConfig(max_document_chars=10), completion)
    grader.is_relevant("q", "0123456789ABCDEF")
    user = completion.calls[0]["messages"][1]["content"]
    assert "0123456789" in user
    assert "ABCDEF" not in user


@pytest.mark.parametrize("question,document", [("", "doc"), ("q", "  "), ("\n", "")])
def test_blank_input_rejected_before_call(question, document):
    completion = FakeCompletion("relevant")
    with pytest.raises(ValueError):
        RelevanceGrader(complete_fn=completion).is_relevant(question, document)
    assert completion.calls == []


# ------------------------------------------------------------------
# filter_relevant
# ------------------------------------------------------------------


def test_filter_relevant_keeps_order():
    results = [(_record("a"), 0.1), (_record("b"), 0.2), (_record("c"), 0.3)]
    grader = RelevanceGrader(complete_fn=FakeCompletion("partial", "irrelevant", "relevant"))
    kept = grader.filter_relevant("question", results)
    assert [(r.text, d) for r, d in kept] == [("a", 0.1), ("c", 0.3)]


def test_filter_relevant_skips_blank_text_without_call():
    completion = FakeCompletion("relevant")
    grader = RelevanceGrader(complete_fn=completion)
    kept = grader.filter_relevant("question", [(_record(" "), 0.1), (_record("text"), 0.2)])
    assert [r.text for r, _ in kept] == ["text"]
    assert len(completion.calls) == 1


def test_filter_relevant_all_dropped_logs(caplog):
    grader = RelevanceGrader(complete_fn=FakeCompletion("irrelevant"))
    with caplog.at_level(logging.WARNING):
        assert grader.filter_relevant("question", [(_record("a"), 0.1)]) == []
    assert "All 1 retrieved documents" in caplog.text


def test_filter_relevant_empty_input():
    completion = FakeCompletion("relevant")
    assert RelevanceGrader(complete_fn=completion).filter_relevant("q", []) == []
    assert completion.calls == []
