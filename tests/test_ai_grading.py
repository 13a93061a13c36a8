import asyncio
import random

import pytest

from conftest import FakeChatFactory, make_page_image
from papergrader.models import GradingMethod
from papergrader.services.ai_grading import (
    AiGradeRequest,
    AiGrader,
    clamp_score,
    default_chat_factory,
    parse_grading_reply,
)


def _request(rubric="light energy to chemical energy", max_points=10, image=None):
    return AiGradeRequest(
        question_id="q3",
        question_text="Explain photosynthesis",
        rubric=rubric,
        max_points=max_points,
        student_text="plants turn light into sugar",
        page_image=image,
    )


def _grader(factory, vision=False, timeout=5):
    return AiGrader(provider="gemini", vision_enabled=vision, vision_model="vision-model",
                    text_model="text-model", timeout=timeout, chat_factory=factory)


def test_mock_tier_with_rubric_gives_full_credit():
    grader = AiGrader(provider="mock")
    result = asyncio.run(grader.grade(_request(max_points=7)))
    assert result.score == 7
    assert result.method == GradingMethod.MOCK
    assert result.student_answer == "plants turn light into sugar"


def test_mock_tier_without_rubric_stays_in_range():
    grader = AiGrader(provider="mock", rng=random.Random(7))
    for _ in range(20):
        result = asyncio.run(grader.grade(_request(rubric="", max_points=3)))
        assert 0 <= result.score <= 3


def test_mock_tier_never_calls_a_model():
    factory = FakeChatFactory()
    grader = AiGrader(provider="mock", vision_enabled=True, chat_factory=factory)
    asyncio.run(grader.grade(_request(image=make_page_image())))
    assert factory.calls == {}


@pytest.mark.parametrize("raw, expected", [
    ("999", 10),
    ("-5", 0),
    ('"NaN"', 0),
    ('"ten"', 0),
    ("true", 0),
    ("null", 0),
    ("6.5", 6.5),
])
def test_model_scores_are_clamped(raw, expected):
    factory = FakeChatFactory(**{"text-model": [f'{{"score": {raw}, "feedback": "ok"}}']})
    result = asyncio.run(_grader(factory).grade(_request()))
    assert result.score == expected
    assert result.method == GradingMethod.TEXT


def test_vision_tier_used_when_enabled():
    factory = FakeChatFactory(**{
        "vision-model": ['{"studentAnswer": "light into sugar", "score": 8, "feedback": "good"}'],
        "text-model": [],
    })
    result = asyncio.run(_grader(factory, vision=True).grade(_request(image=make_page_image())))

    assert result.method == GradingMethod.VISION
    assert result.score == 8
    assert result.student_answer == "light into sugar"
    message = factory.calls["vision-model"][0]
    assert message.file_contents[0].mime_type == "image/jpeg"
    assert factory.calls["text-model"] == []


def test_vision_failure_falls_back_to_text():
    factory = FakeChatFactory(**{
        "vision-model": [RuntimeError("503 Service Unavailable")],
        "text-model": ['{"score": 4, "feedback": "partial"}'],
    })
    result = asyncio.run(_grader(factory, vision=True).grade(_request(image=make_page_image())))
    assert result.method == GradingMethod.TEXT
    assert result.score == 4
    assert result.feedback == "partial"


def test_vision_skipped_without_page_image():
    factory = FakeChatFactory(**{"vision-model": [], "text-model": ['{"score": 2, "feedback": "meh"}']})
    result = asyncio.run(_grader(factory, vision=True).grade(_request(image=None)))
    assert result.method == GradingMethod.TEXT
    assert factory.calls["vision-model"] == []


def test_both_tiers_failing_scores_zero():
    factory = FakeChatFactory(**{
        "vision-model": [RuntimeError("vision down")],
        "text-model": ["I think this deserves a 7"],
    })
    result = asyncio.run(_grader(factory, vision=True).grade(_request(image=make_page_image())))
    assert result.score == 0
    assert result.method == GradingMethod.FAILED
    assert result.feedback.startswith("AI grading failed:")
    assert "vision down" in result.feedback
    assert "not a JSON object" in result.feedback


def test_slow_model_times_out_and_falls_back():
    async def slow():
        await asyncio.sleep(5)
        return '{"score": 10}'

    factory = FakeChatFactory(**{
        "vision-model": [slow],
        "text-model": ['{"score": 3, "feedback": "ok"}'],
    })
    result = asyncio.run(_grader(factory, vision=True, timeout=0.05).grade(_request(image=make_page_image())))
    assert result.method == GradingMethod.TEXT
    assert result.score == 3


def test_clamp_score_edges():
    assert clamp_score(5, 5) == 5
    assert clamp_score(0, 5) == 0
    assert clamp_score(float("inf"), 5) == 5
    assert clamp_score(float("nan"), 5) == 0
    assert clamp_score(False, 5) == 0
    assert clamp_score("3", 5) == 3
    assert clamp_score([1], 5) == 0


def test_parse_grading_reply_strategies():
    assert parse_grading_reply('{"score": 1}') == {"score": 1}
    assert parse_grading_reply('```json\n{"score": 2}\n```') == {"score": 2}
    assert parse_grading_reply('Here you go: {"score": 3, "feedback": "x"} thanks') == {"score": 3, "feedback": "x"}
    assert parse_grading_reply("[1, 2]") is None
    assert parse_grading_reply("") is None


class _FakeResponse:
    def __init__(self, text=None):
        self._text = text
        self.prompt_feedback = "block_reason: SAFETY"

    @property
    def text(self):
        if self._text is None:
            raise ValueError("no candidates")
        return self._text


class _FakeGenerativeModel:
    created = []

    def __init__(self, model_name, system_instruction=None, generation_config=None):
        self.model_name = model_name
        self.system_instruction = system_instruction
        self.generation_config = generation_config
        self.sent = []
        self.reply = _FakeResponse('{"score": 1}')
        _FakeGenerativeModel.created.append(self)

    def generate_content(self, parts):
        self.sent.append(parts)
        return self.reply


def test_llm_chat_sends_image_then_prompt_in_json_mode(monkeypatch):
    from papergrader.services import llm

    _FakeGenerativeModel.created = []
    monkeypatch.setattr(llm.genai, "GenerativeModel", _FakeGenerativeModel)

    chat = default_chat_factory("text-model", "grade strictly")
    message = llm.UserMessage(text="prompt", file_contents=[llm.ImageContent(b"img", mime_type="image/png")])
    reply = asyncio.run(chat.send_message(message))

    assert reply == '{"score": 1}'
    model = _FakeGenerativeModel.created[0]
    assert model.model_name == "text-model"
    assert model.system_instruction == "grade strictly"
    assert model.generation_config == {
        "temperature": 0.3,
        "max_output_tokens": 1024,
        "response_mime_type": "application/json",
    }
    assert model.sent[0] == [{"inline_data": {"mime_type": "image/png", "data": b"img"}}, "prompt"]


def test_llm_chat_blocked_reply_raises(monkeypatch):
    from papergrader.services import llm

    _FakeGenerativeModel.created = []
    monkeypatch.setattr(llm.genai, "GenerativeModel", _FakeGenerativeModel)

    chat = llm.LlmChat(model_name="text-model")
    chat._get_model().reply = _FakeResponse(None)
    with pytest.raises(RuntimeError, match="returned no text"):
        asyncio.run(chat.send_message(llm.UserMessage(text="prompt")))
