import json
from typing import Any, Dict, List

import pytest

from lingotaboo.gemini_client import GeminiReply
from lingotaboo.oracles import (
    GeminiOracles,
    Translation,
    extract_json_object,
    match_key_words,
    substring_evaluation,
    validate_translation,
)


class ScriptedClient:
    """Stands in for GeminiClient; replays canned replies."""

    def __init__(self, replies: List[Any], calls: List[Dict[str, Any]]) -> None:
        self.replies = replies
        self.calls = calls
        self.closed = False

    async def complete(self, prompt, *, system=None, json_mode=False, temperature=None):
        self.calls.append({"prompt": prompt, "system": system, "json_mode": json_mode, "temperature": temperature})
        body = self.replies.pop(0)
        text = body if isinstance(body, str) else json.dumps(body)
        return GeminiReply(
            text=text,
            model="gemini-2.5-flash",
            usage={"prompt_tokens": 50, "cached_tokens": 10, "completion_tokens": 25, "total_tokens": 75},
        )

    async def aclose(self):
        self.closed = True


@pytest.fixture
def scripted():
    calls: List[Dict[str, Any]] = []
    clients: List[ScriptedClient] = []

    def build(*replies):
        queue = list(replies)

        def factory():
            client = ScriptedClient(queue, calls)
            clients.append(client)
            return client

        return GeminiOracles(client_factory=factory)

    build.calls = calls
    build.clients = clients
    return build


class TestExtractJson:
    def test_plain(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert extract_json_object('Sure!\n```json\n{"a": [1, 2]}\n```\nDone') == {"a": [1, 2]}

    def test_embedded(self):
        assert extract_json_object('Result: {"ok": true} -- end') == {"ok": True}

    def test_garbage(self):
        with pytest.raises(ValueError):
            extract_json_object("no json here")


def test_match_key_words_maps_to_canonical_spelling():
    key_words = ["Rápido", "rojo", "metal"]
    assert match_key_words(["METAL", " rápido ", "coche", 3, ""], key_words) == ["Rápido", "metal"]
    assert match_key_words([], key_words) == []


def test_substring_evaluation():
    result = substring_evaluation("Es un vehículo ROJO de metal", ["rápido", "rojo", "metal"], "coche")
    assert result.fallback is True
    assert result.words_found == ["rojo", "metal"]
    assert result.direct_mention is False
    assert [d.found for d in result.word_details] == [False, True, True]
    assert substring_evaluation("mi coche", ["rojo"], "coche").direct_mention is True


class TestValidateTranslation:
    def test_accepts_aligned(self):
        validate_translation(Translation(answer_word="coche", key_words=["rápido", "rojo"]), 2)

    @pytest.mark.parametrize(
        "answer,words",
        [
            ("", ["rápido", "rojo"]),
            ("coche", ["rápido"]),
            ("coche", ["rápido", " "]),
            ("coche", ["rojo", "ROJO"]),
            ("coche", ["Coche", "rojo"]),
        ],
    )
    def test_rejects(self, answer, words):
        with pytest.raises(ValueError):
            validate_translation(Translation(answer_word=answer, key_words=words), 2)


class TestGeminiOracles:
    @pytest.mark.asyncio
    async def test_translate_aligns_by_index(self, scripted):
        oracles = scripted(
            {
                "answer_word": "coche",
                "translations": [
                    {"index": 2, "original": "METAL", "translated": "metal"},
                    {"index": 0, "original": "FAST", "translated": "rápido"},
                    {"index": 1, "original": "RED", "translated": " rojo "},
                ],
            }
        )
        result = await oracles.translate(["FAST", "RED", "METAL"], "CAR", "es")

        assert result.answer_word == "coche"
        assert result.key_words == ["rápido", "rojo", "metal"]
        assert result.usage.total_tokens == 75
        assert result.usage.cached_input_tokens == 10
        call = scripted.calls[0]
        assert call["json_mode"] is True
        assert "Spanish" in call["prompt"]
        assert scripted.clients[0].closed is True

    @pytest.mark.asyncio
    async def test_translate_missing_row_is_rejected(self, scripted):
        oracles = scripted({"answer_word": "coche", "translations": [{"index": 0, "translated": "rápido"}]})
        with pytest.raises(ValueError):
            await oracles.translate(["FAST", "RED"], "CAR", "es")
        assert scripted.clients[0].closed is True

    @pytest.mark.asyncio
    async def test_evaluate_restricts_to_key_words(self, scripted):
        oracles = scripted(
            "```json\n"
            + json.dumps(
                {
                    "words_found": ["ROJO", "volante", "metal"],
                    "word_details": [{"key_word": "rojo", "found": True, "used_as": "rojo"}],
                    "direct_mention": False,
                    "description_quality": "good",
                    "creativity": "7",
                    "naturalness": "n/a",
                    "feedback": "Bien",
                    "suggestions": ["Usa 'rápido'", 5],
                }
            )
            + "\n```"
        )
        result = await oracles.evaluate("Es rojo y de metal", ["rápido", "rojo", "metal"], "coche", "es")

        assert result.words_found == ["rojo", "metal"]
        assert result.fallback is False
        assert result.creativity == 7
        assert result.naturalness is None
        assert result.suggestions == ["Usa 'rápido'"]
        assert result.word_details[0].key_word == "rojo"
        assert result.usage.model == "gemini-2.5-flash"

    @pytest.mark.asyncio
    async def test_evaluate_unparseable_reply_raises(self, scripted):
        oracles = scripted("I cannot grade this")
        with pytest.raises(ValueError):
            await oracles.evaluate("text", ["a"], "b", "en")

    @pytest.mark.asyncio
    async def test_write_example(self, scripted):
        oracles = scripted({"description": "  Es rápido, rojo y de metal.  ", "key_words_used": ["rápido", "rojo", "metal"]})
        example = await oracles.write_example("coche", ["rápido", "rojo", "metal"], "es")
        assert example.description == "Es rápido, rojo y de metal."
        assert example.key_words_used == ["rápido", "rojo", "metal"]
        assert scripted.calls[0]["temperature"] == 0.7

    @pytest.mark.asyncio
    async def test_write_example_requires_description(self, scripted):
        oracles = scripted({"description": ""})
        with pytest.raises(ValueError):
            await oracles.write_example("coche", ["rojo"], "es")
