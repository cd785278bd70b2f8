"""Structured analysis of diary transcripts with Anthropic's Messages API."""

import json
import logging
import re
from dataclasses import dataclass, field
from json import JSONDecodeError
from typing import Any, Protocol

import anthropic
from pydantic import ValidationError

from health_diary.models.user import DEFAULT_TONE, TOPICS
from health_diary.schemas.analysis import StructuredAnalysis
from health_diary.services.errors import AnalysisError, ResultShapeError

logger = logging.getLogger("health_diary.analysis")

TONE_GUIDANCE = {
    "minimal": "Be concise and direct. Use brief, factual language.",
    "friendly": "Be warm and supportive. Use encouraging language while remaining professional.",
    "reassuring": "Be gentle and comforting. Use supportive, calming language that reduces anxiety.",
}

FOLLOW_UP_TONE_GUIDANCE = {
    "minimal": "Keep questions brief and direct.",
    "friendly": "Ask questions in a warm, conversational way.",
    "reassuring": "Ask questions gently and supportively.",
}

OUTPUT_FORMAT = """{
  "summary": "Brief overall summary of the entry",
  "subjects": {
    "<topic>": {
      "mentioned": true,
      "data": {"notes": "topic-specific details, e.g. duration/quality for sleep, meals for food"},
      "confidence": 0.0
    }
  },
  "missing_subjects": ["tracked topics not mentioned"],
  "health_flags": {
    "concerning_symptoms": ["symptoms that may need attention"],
    "positive_trends": ["encouraging health patterns"],
    "recommendations": ["gentle suggestions for user consideration"]
  },
  "metadata": {
    "word_count": 0,
    "key_themes": ["main topics discussed"],
    "emotional_tone": "overall emotional state"
  }
}"""

FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")


@dataclass
class AnalysisResult:
    analysis: StructuredAnalysis
    usage: dict[str, int] = field(default_factory=dict)
    request_id: str | None = None


class AnalysisProvider(Protocol):
    def analyze(self, text: str, topics: list[str], tone: str) -> AnalysisResult: ...

    def follow_up_questions(self, text: str, missing_topics: list[str], tone: str) -> list[str]: ...


def build_system_prompt(topics: list[str], tone: str) -> str:
    guidance = TONE_GUIDANCE.get(tone, TONE_GUIDANCE[DEFAULT_TONE])
    tracked = ", ".join(topics) if topics else ", ".join(TOPICS)
    return f"""You are a health diary analysis assistant. Your role is to analyze voice diary entries and extract structured health information.

TONE: {guidance}

SUBJECTS TO TRACK: {tracked}

ANALYSIS GUIDELINES:
1. Extract information about the specified health subjects from the transcript
2. Provide confidence scores (0-1) for each extracted piece of information
3. Identify any concerning symptoms or patterns that may need medical attention
4. Note any tracked subjects that were not mentioned
5. Maintain privacy and medical confidentiality
6. Do not provide medical diagnoses or treatment recommendations

OUTPUT FORMAT: Return valid JSON only, with this structure:
{OUTPUT_FORMAT}"""


def build_analysis_prompt(text: str) -> str:
    return (
        "Please analyze this health diary entry transcript and extract structured health information:\n\n"
        f'TRANSCRIPT:\n"{text}"\n\n'
        "Return the analysis as JSON following the specified format. Focus on extracting factual health "
        "information while being sensitive to the user's emotional state and privacy."
    )


def build_follow_up_prompt(text: str, missing_topics: list[str], tone: str) -> str:
    guidance = FOLLOW_UP_TONE_GUIDANCE.get(tone, FOLLOW_UP_TONE_GUIDANCE[DEFAULT_TONE])
    return f"""Based on this health diary transcript, generate 2-3 brief follow-up questions about the missing health topics.

TRANSCRIPT: "{text}"

MISSING SUBJECTS: {", ".join(missing_topics)}

TONE: {guidance}

Generate questions that:
1. Are easy to answer briefly
2. Feel natural and conversational
3. Don't feel invasive or medical
4. Encourage the user to share more about their day

Return as JSON:
{{"questions": ["Question about first missing subject?", "Question about second missing subject?"]}}"""


def load_json_object(text: str) -> dict[str, Any]:
    """Parse the first JSON object in a model reply.

    A fenced ```json block wins; otherwise the text is scanned for the first
    ``{`` that decodes to an object, so a short lead-in before the JSON is fine.
    """
    match = FENCED_JSON.search(text)
    if match:
        try:
            value = json.loads(match.group(1))
        except JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value

    decoder = json.JSONDecoder()
    for idx, ch in enumerate(text):
        if ch != "{":
            continue
        try:
            value, _ = decoder.raw_decode(text, idx)
        except JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    raise ResultShapeError("Analysis response is not a JSON object")


def parse_structured_analysis(text: str) -> StructuredAnalysis:
    """Parse and validate a reply. Malformed JSON and wrong shapes both raise ResultShapeError."""
    payload = load_json_object(text)
    try:
        return StructuredAnalysis.model_validate(payload)
    except ValidationError as e:
        raise ResultShapeError(f"Analysis response has unexpected structure: {e.error_count()} errors") from e


class AnthropicAnalysisProvider:
    """Sends transcripts to a Claude model and returns validated structured analysis."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 4000,
        temperature: float = 0.3,
        timeout_seconds: int = 60,
        client=None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self._client = client

    def _get_client(self):
        """Lazy-create the SDK client so a missing key only fails analysis calls."""
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout_seconds, max_retries=2)
        return self._client

    def _complete(self, system: str | None, prompt: str, max_tokens: int, temperature: float):
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        try:
            return self._get_client().messages.create(**kwargs)
        except anthropic.AnthropicError as e:
            raise AnalysisError(f"Anthropic API error: {e}") from e

    @staticmethod
    def _text(response) -> str:
        return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")

    def analyze(self, text: str, topics: list[str], tone: str) -> AnalysisResult:
        response = self._complete(
            build_system_prompt(topics, tone), build_analysis_prompt(text), self.max_tokens, self.temperature
        )
        analysis = parse_structured_analysis(self._text(response))
        usage = {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        }
        return AnalysisResult(analysis=analysis, usage=usage, request_id=getattr(response, "id", None))

    def follow_up_questions(self, text: str, missing_topics: list[str], tone: str) -> list[str]:
        response = self._complete(None, build_follow_up_prompt(text, missing_topics, tone), 1000, 0.7)
        reply = self._text(response)
        try:
            questions = load_json_object(reply).get("questions")
        except ResultShapeError:
            questions = None
        if isinstance(questions, list):
            return [str(q) for q in questions]
        # Plain-text reply: one question per line
        return [line.strip() for line in reply.splitlines() if line.strip()]
