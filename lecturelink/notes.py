"""Study notes and headings generated from lecture transcripts."""

from __future__ import annotations

import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Protocol

from openai import OpenAI

from .config import load_config
from .exceptions import NotesError
from .models import Config

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[\w']+")
_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)

MIN_TRANSCRIPT_LENGTH = 10
HEADING_CONTEXT_CHARS = 1000
DEFAULT_HEADING = "Untitled Lecture"
DEFAULT_SUBJECT_TAG = "General"

NOTES_PROMPT = (
    "You are a teaching assistant. Turn the lecture transcript into well structured study notes "
    "in markdown: announcements and deadlines first, then key concepts with definitions, "
    "examples, formulas and likely exam topics."
)

HEADING_PROMPT = (
    "Given this lecture transcription, generate a concise title and subject tag. Respond with JSON "
    'containing "heading" and "subjectTag" fields. The subject tag is 1-3 words.\n\n'
    'Transcription: "{excerpt}..."'
)

_STOPWORDS = frozenset(
    "a an and are as at be but by for from has have i in is it its of on or so that the this to "
    "was we were will with you your they them their there these those what which who how".split()
)


@dataclass(frozen=True)
class Heading:
    heading: str
    subject_tag: str


class NotesGenerator(Protocol):
    """Common interface for note generators."""

    def enhance(self, transcript: str) -> str:
        """Return markdown study notes for ``transcript``."""

    def generate_heading(self, transcript: str, notes: Optional[str] = None) -> Heading:
        """Return a heading and subject tag for the lecture."""


def _validate_transcript(transcript: str) -> str:
    text = (transcript or "").strip()
    if not text:
        raise NotesError("No transcription provided or empty")
    if len(text) < MIN_TRANSCRIPT_LENGTH:
        raise NotesError(f"Transcription too short ({len(text)} characters)")
    return text


class LLMNotesGenerator:
    """Notes from a hosted chat completion model (Groq, via the OpenAI SDK)."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = "https://api.groq.com/openai/v1",
        notes_model: str = "llama-3.3-70b-versatile",
        heading_model: str = "llama-3.1-8b-instant",
        client: Any = None,
    ) -> None:
        if client is None:
            if api_key is None:
                raise RuntimeError("An API key is required for LLM generated notes.")
            client = OpenAI(api_key=api_key, base_url=base_url)
        self._client = client
        self.notes_model = notes_model
        self.heading_model = heading_model

    def _complete(self, model: str, messages: List[dict], **options: Any) -> str:
        try:
            completion = self._client.chat.completions.create(model=model, messages=messages, **options)
        except Exception as exc:
            logger.error("Chat completion with %s failed: %s", model, exc)
            raise NotesError(f"Chat completion failed: {exc}") from exc
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise NotesError("No response from the language model")
        return content.strip()

    def enhance(self, transcript: str) -> str:
        text = _validate_transcript(transcript)
        logger.info("Generating enhanced notes for %d characters of transcript", len(text))
        return self._complete(
            self.notes_model,
            [
                {"role": "system", "content": NOTES_PROMPT},
                {"role": "user", "content": text},
            ],
            temperature=0.7,
            max_tokens=4000,
            top_p=0.95,
        )

    def generate_heading(self, transcript: str, notes: Optional[str] = None) -> Heading:
        source = (transcript or "").strip() or (notes or "").strip()
        if not source:
            raise NotesError("No transcription or enhanced notes provided")
        prompt = HEADING_PROMPT.format(excerpt=source[:HEADING_CONTEXT_CHARS])
        response = self._complete(
            self.heading_model,
            [{"role": "user", "content": prompt}],
            temperature=0.3,
            max_tokens=150,
        )
        return parse_heading(response)


def parse_heading(response: str) -> Heading:
    match = _JSON_RE.search(response)
    try:
        payload = json.loads(match.group(0) if match else response)
    except json.JSONDecodeError:
        logger.warning("Could not parse heading response; using defaults")
        return Heading(DEFAULT_HEADING, DEFAULT_SUBJECT_TAG)
    if not isinstance(payload, dict):
        return Heading(DEFAULT_HEADING, DEFAULT_SUBJECT_TAG)
    heading = str(payload.get("heading") or "").strip() or DEFAULT_HEADING
    tag = str(payload.get("subjectTag") or payload.get("subject_tag") or "").strip() or DEFAULT_SUBJECT_TAG
    return Heading(heading, tag)


class ExtractiveNotesGenerator:
    """A naive frequency based note taker.

    The implementation is intentionally dependency free so that notes are always
    available, even without an API key. Sentences are ranked by TF-IDF inspired
    word importance scoring and the highest ranking ones are returned as bullet
    points in their original order.
    """

    def __init__(self, max_sentences: int = 8) -> None:
        self.max_sentences = max_sentences

    def enhance(self, transcript: str) -> str:
        text = _validate_transcript(transcript)
        points = self.key_sentences(text)
        return "### Key points\n\n" + "\n".join(f"- {sentence}" for sentence in points)

    def key_sentences(self, transcript: str) -> List[str]:
        sentences = _split_sentences(transcript)
        if len(sentences) <= self.max_sentences:
            return sentences

        scores = self._score_sentences(sentences)
        ranked = sorted(range(len(sentences)), key=lambda i: scores[i], reverse=True)
        top_indices = sorted(ranked[: self.max_sentences])
        return [sentences[i] for i in top_indices]

    def generate_heading(self, transcript: str, notes: Optional[str] = None) -> Heading:
        words = [w for w in _tokenize(transcript or notes or "") if w not in _STOPWORDS and len(w) > 2]
        if not words:
            return Heading(DEFAULT_HEADING, DEFAULT_SUBJECT_TAG)
        top = [word for word, _ in Counter(words).most_common(3)]
        return Heading(" ".join(word.capitalize() for word in top), top[0].capitalize())

    def _score_sentences(self, sentences: List[str]) -> List[float]:
        words_per_sentence = [_tokenize(sentence) for sentence in sentences]
        tf_scores = [_term_frequency(words) for words in words_per_sentence]
        idf_scores = _inverse_document_frequency(words_per_sentence)

        sentence_scores = []
        for words, tf in zip(words_per_sentence, tf_scores):
            score = 0.0
            for word in words:
                score += tf.get(word, 0.0) * idf_scores.get(word, 0.0)
            sentence_scores.append(score)
        return sentence_scores


def get_notes_generator(preferred: Optional[str] = None, config: Optional[Config] = None) -> NotesGenerator:
    """Return the best available notes generator."""

    config = config or load_config()
    backend_name = preferred or config.notes_backend

    if backend_name in {"llm", "auto"}:
        api_key = config.groq_api_keys[0] if config.groq_api_keys else None
        try:
            return LLMNotesGenerator(
                api_key,
                base_url=config.llm_base_url,
                notes_model=config.notes_model,
                heading_model=config.heading_model,
            )
        except RuntimeError as exc:
            if backend_name == "llm":
                raise NotesError(f"Failed to initialise LLM notes: {exc}") from exc
            logger.info("LLM notes unavailable (%s); falling back to extractive notes", exc)

    if backend_name not in {"llm", "auto", "extractive"}:
        raise NotesError(f"Unknown notes backend: {backend_name}")
    return ExtractiveNotesGenerator()


def _split_sentences(text: str) -> List[str]:
    text = text.strip()
    if not text:
        return []
    sentences = re.split(r"(?<=[.!?])\s+", text)
    return [s.strip() for s in sentences if s.strip()]


def _tokenize(sentence: str) -> List[str]:
    return [match.group(0).lower() for match in _WORD_RE.finditer(sentence)]


def _term_frequency(words: Iterable[str]) -> Counter:
    counter: Counter[str] = Counter(words)
    total = sum(counter.values()) or 1
    return Counter({word: count / total for word, count in counter.items()})


def _inverse_document_frequency(docs: List[List[str]]) -> Counter:
    doc_count = len(docs)
    counter: Counter[str] = Counter()
    for doc in docs:
        counter.update(set(doc))
    return Counter({word: math.log(doc_count / (1 + count)) + 1 for word, count in counter.items()})
