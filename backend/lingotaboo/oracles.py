"""Translator, evaluator and example writer used by the session engine.

The engine only depends on the three ``Protocol`` interfaces below. The default
implementation, :class:`GeminiOracles`, prompts the configured LLM in JSON mode.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from .gemini_client import GeminiClient, GeminiReply
from .languages import language_name


class OracleUsage(BaseModel):
    model: str
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_reply(cls, reply: GeminiReply) -> "OracleUsage":
        usage = reply.usage or {}
        return cls(
            model=reply.model,
            input_tokens=usage.get("prompt_tokens", 0),
            cached_input_tokens=usage.get("cached_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )


class Translation(BaseModel):
    answer_word: str
    # Index-aligned with the key words that were sent
    key_words: List[str]
    usage: Optional[OracleUsage] = None


class WordDetail(BaseModel):
    key_word: str
    found: bool
    used_as: str = ""
    natural: bool = True
    context: str = ""


class Evaluation(BaseModel):
    words_found: List[str] = Field(default_factory=list)
    word_details: List[WordDetail] = Field(default_factory=list)
    direct_mention: bool = False
    description_quality: Optional[str] = None
    grammar: Optional[str] = None
    creativity: Optional[int] = None
    naturalness: Optional[int] = None
    feedback: str = ""
    suggestions: List[str] = Field(default_factory=list)
    # True when produced by substring matching instead of the model
    fallback: bool = False
    usage: Optional[OracleUsage] = None

    def payload(self) -> Dict[str, Any]:
        """Evaluator judgment without billing data, as stored on the session."""
        return self.model_dump(exclude={"usage"})


class Example(BaseModel):
    description: str
    key_words_used: List[str] = Field(default_factory=list)
    usage: Optional[OracleUsage] = None


class Translator(Protocol):
    async def translate(self, key_words: Sequence[str], answer_word: str, target_language: str) -> Translation:
        ...


class Evaluator(Protocol):
    async def evaluate(
        self,
        description: str,
        key_words: Sequence[str],
        answer_word: str,
        target_language: str,
    ) -> Evaluation:
        ...


class ExampleWriter(Protocol):
    async def write_example(self, answer_word: str, key_words: Sequence[str], target_language: str) -> Example:
        ...


def extract_json_object(text: str) -> Dict[str, Any]:
    try:
        return json.loads(text)
    except Exception:
        pass
    code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    if code_block:
        try:
            return json.loads(code_block.group(1))
        except Exception:
            pass
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        try:
            return json.loads(text[first : last + 1])
        except Exception:
            pass
    raise ValueError("Failed to parse JSON from model output")


def _fold(word: str) -> str:
    return (word or "").strip().casefold()


def match_key_words(reported: Sequence[Any], key_words: Sequence[str]) -> List[str]:
    """Map reported words onto the canonical key-word spellings.

    Unknown words are dropped; the result keeps key-word order.
    """
    wanted = {_fold(str(w)) for w in reported if isinstance(w, str) and w.strip()}
    return [kw for kw in key_words if _fold(kw) in wanted]


def substring_evaluation(description: str, key_words: Sequence[str], answer_word: str) -> Evaluation:
    text = description.casefold()
    found = [kw for kw in key_words if _fold(kw) and _fold(kw) in text]
    return Evaluation(
        words_found=found,
        word_details=[WordDetail(key_word=kw, found=kw in found) for kw in key_words],
        direct_mention=bool(_fold(answer_word)) and _fold(answer_word) in text,
        feedback="Evaluation service temporarily unavailable. Words were matched literally.",
        fallback=True,
    )


def validate_translation(translation: Translation, expected: int) -> None:
    if not translation.answer_word.strip():
        raise ValueError("translation is missing the answer word")
    if len(translation.key_words) != expected:
        raise ValueError(f"expected {expected} translated key words, got {len(translation.key_words)}")
    folded = [_fold(w) for w in translation.key_words]
    if any(not w for w in folded):
        raise ValueError("translation contains an empty key word")
    if len(set(folded)) != len(folded):
        raise ValueError("translated key words are not distinct")
    if _fold(translation.answer_word) in folded:
        raise ValueError("translated key words contain the answer word")


def _translation_prompt(key_words: Sequence[str], answer_word: str, language: str) -> str:
    numbered = "\n".join(f"{i}. {w}" for i, w in enumerate(key_words))
    return (
        f"Translate the answer word and the numbered key words of a word-guessing card into {language}.\n"
        "Give single-word translations that keep the meaning in the context of the answer word.\n"
        "Every key word translation must be distinct and must differ from the translated answer word.\n\n"
        f"Answer word: {answer_word}\n"
        f"Key words:\n{numbered}\n\n"
        "Return ONLY a JSON object with keys: answer_word (string), "
        "translations (array of {index, original, translated}, one per key word, same order)."
    )


def _evaluation_prompt(description: str, key_words: Sequence[str], answer_word: str, language: str) -> str:
    words = ", ".join(key_words)
    return (
        f"A student practising {language} is describing \"{answer_word}\" without naming it, "
        f"and should use as many of these key words as possible: {words}.\n\n"
        f"Student description:\n\"\"\"\n{description}\n\"\"\"\n\n"
        "Decide which key words were used, accepting conjugations, plurals and close variants.\n"
        "Also judge whether the answer word itself was mentioned, and rate the description.\n\n"
        "Return ONLY a JSON object with keys:\n"
        "words_found (array of key words exactly as listed above),\n"
        "word_details (array of {key_word, found, used_as, natural, context}),\n"
        "direct_mention (boolean), description_quality (excellent|good|fair|poor),\n"
        "grammar (correct|minor_errors|major_errors), creativity (1-10), naturalness (1-10),\n"
        "feedback (string), suggestions (array of strings)."
    )


def _example_prompt(answer_word: str, key_words: Sequence[str], language: str) -> str:
    return (
        f"Write a natural description of \"{answer_word}\" in {language} that uses ALL of these key words: "
        f"{', '.join(key_words)}.\n"
        f"Do not mention \"{answer_word}\" itself. Two or three conversational sentences.\n\n"
        "Return ONLY a JSON object with keys: description (string), key_words_used (array of strings)."
    )


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class GeminiOracles:
    """LLM-backed translator, evaluator and example writer."""

    def __init__(self, client_factory: Callable[[], GeminiClient] = GeminiClient) -> None:
        self._client_factory = client_factory

    async def _ask(self, prompt: str, system: str, temperature: float) -> GeminiReply:
        client = self._client_factory()
        try:
            return await client.complete(prompt, system=system, json_mode=True, temperature=temperature)
        finally:
            await client.aclose()

    async def translate(self, key_words: Sequence[str], answer_word: str, target_language: str) -> Translation:
        language = language_name(target_language)
        reply = await self._ask(
            _translation_prompt(key_words, answer_word, language),
            "You are a professional translator preparing vocabulary for language-learning games.",
            0.3,
        )
        data = extract_json_object(reply.text)
        rows = data.get("translations")
        if not isinstance(rows, list):
            raise ValueError("translation response has no translations array")
        by_index: Dict[int, str] = {}
        for pos, row in enumerate(rows):
            if not isinstance(row, dict):
                continue
            idx = _int_or_none(row.get("index"))
            by_index[pos if idx is None else idx] = str(row.get("translated") or "").strip()
        translation = Translation(
            answer_word=str(data.get("answer_word") or "").strip(),
            key_words=[by_index.get(i, "") for i in range(len(key_words))],
            usage=OracleUsage.from_reply(reply),
        )
        validate_translation(translation, len(key_words))
        return translation

    async def evaluate(
        self,
        description: str,
        key_words: Sequence[str],
        answer_word: str,
        target_language: str,
    ) -> Evaluation:
        language = language_name(target_language)
        reply = await self._ask(
            _evaluation_prompt(description, key_words, answer_word, language),
            f"You are an encouraging but fair {language} teacher grading vocabulary use.",
            0.3,
        )
        data = extract_json_object(reply.text)
        details: List[WordDetail] = []
        for row in data.get("word_details") or []:
            if isinstance(row, dict) and row.get("key_word"):
                details.append(
                    WordDetail(
                        key_word=str(row.get("key_word")),
                        found=bool(row.get("found")),
                        used_as=str(row.get("used_as") or ""),
                        natural=bool(row.get("natural", True)),
                        context=str(row.get("context") or ""),
                    )
                )
        suggestions = data.get("suggestions") or []
        return Evaluation(
            words_found=match_key_words(data.get("words_found") or [], key_words),
            word_details=details,
            direct_mention=bool(data.get("direct_mention")),
            description_quality=data.get("description_quality"),
            grammar=data.get("grammar"),
            creativity=_int_or_none(data.get("creativity")),
            naturalness=_int_or_none(data.get("naturalness")),
            feedback=str(data.get("feedback") or ""),
            suggestions=[str(s) for s in suggestions if isinstance(s, str)],
            usage=OracleUsage.from_reply(reply),
        )

    async def write_example(self, answer_word: str, key_words: Sequence[str], target_language: str) -> Example:
        language = language_name(target_language)
        reply = await self._ask(
            _example_prompt(answer_word, key_words, language),
            f"You are a creative language teacher writing model answers in {language}.",
            0.7,
        )
        data = extract_json_object(reply.text)
        description = str(data.get("description") or "").strip()
        if not description:
            raise ValueError("example response has no description")
        used = data.get("key_words_used") or []
        return Example(
            description=description,
            key_words_used=[str(w) for w in used if isinstance(w, str)],
            usage=OracleUsage.from_reply(reply),
        )
