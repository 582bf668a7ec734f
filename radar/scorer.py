"""Scoring engine: LLM judging with strict validation and a deterministic fallback.

Architecture
------------
Each submission is judged on six sub-scores, each in [0, 10]:

- **clarity**: could a twelve-year-old follow it; hook, concision, no jargon.
- **problem_value**: acute pain, quantified value.
- **feasibility_signal**: evidence of a working solution.
- **originality**: novel approach or unique constraint.
- **impact_convert**: call to action, conversion potential.
- **submission_readiness**: demo, repo, README, slides, screenshots.

``final_score`` (0-100) is taken from the engine when it supplies a valid one,
otherwise recomputed with :data:`WEIGHTS`::

    final = 10 * (0.15*clarity + 0.20*problem_value + 0.15*feasibility_signal
                  + 0.15*originality + 0.20*impact_convert
                  + 0.15*submission_readiness)

The weights are the hackathon rubric's category maxima (15/20/15/15/20/15)
normalized to sum to 1.

Any engine failure, timeout, or malformed response is an :class:`EngineError`;
the orchestrator then calls :func:`fallback_evaluation`, a pure heuristic over
the entry's own content that is marked ``degraded`` and never raises.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from radar.errors import EngineError
from radar.schemas import SUB_SCORE_KEYS, Delta, Evaluation, Scores

log = logging.getLogger(__name__)

WEIGHTS: dict[str, float] = {
    "clarity": 0.15,
    "problem_value": 0.20,
    "feasibility_signal": 0.15,
    "originality": 0.15,
    "impact_convert": 0.20,
    "submission_readiness": 0.15,
}

FALLBACK_MODEL = "heuristic-fallback"

# ---------------------------------------------------------------------------
# Default prompt
# ---------------------------------------------------------------------------

JUDGE_SYSTEM_PROMPT = """\
You are a hackathon judge. Read the latest submission from a competing team \
(plus a few of their earlier submissions for context) and score the project \
as it stands now.

Score each dimension from 0 to 10 (decimals allowed):
- clarity: a twelve-year-old could follow it; strong hook, concise, no jargon
- problem_value: acute pain, quantified value for a real audience
- feasibility_signal: evidence of a working solution (built, demoed, deployed)
- originality: novel approach or a genuinely unique constraint
- impact_convert: clear call to action and conversion potential
- submission_readiness: demo link/video, repo, README run steps, slides, screenshots

Be opinionated and consistent. Identical submissions must receive identical scores.

Respond with ONLY valid JSON:
{
  "subscores": {
    "clarity": <0-10>,
    "problem_value": <0-10>,
    "feasibility_signal": <0-10>,
    "originality": <0-10>,
    "impact_convert": <0-10>,
    "submission_readiness": <0-10>
  },
  "evidence": ["<what the submission does well>"],
  "gaps": ["<what is missing or weak>"]
}
"""


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Async judge client for Anthropic or OpenAI-compatible endpoints.

    SDK-level retries are off; the orchestrator bounds each engine call and
    owns the fallback.  ``call`` returns a JSON object or raises
    :class:`EngineError`, retryable unless the provider rejected the request
    itself (4xx other than 408/409/429) or the answer was unusable.
    """

    MAX_TOKENS = 1024
    DEFAULT_MODELS = {"anthropic": "claude-haiku-4-5-20251001", "openai": "gpt-4o-mini"}

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        provider = provider or os.environ.get("LLM_PROVIDER", "anthropic")
        if provider == "openai_compatible":
            provider = "openai"
        if provider not in self.DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {provider!r}")
        self.provider = provider
        self.model = model or os.environ.get("LLM_MODEL") or self.DEFAULT_MODELS[provider]
        self._api_key = api_key
        self._base_url = base_url
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key or os.environ.get("ANTHROPIC_API_KEY"), max_retries=0,
            )
            return
        import openai
        kwargs: dict[str, Any] = {"max_retries": 0}
        if key := self._api_key or os.environ.get("OPENAI_API_KEY"):
            kwargs["api_key"] = key
        if url := self._base_url or os.environ.get("OPENAI_BASE_URL"):
            kwargs["base_url"] = url
        self._client = openai.AsyncOpenAI(**kwargs)

    async def call(self, system: str, user: str) -> dict[str, Any]:
        """Judge *user* under the *system* prompt and return the decoded JSON object."""
        complete = self._complete_anthropic if self.provider == "anthropic" else self._complete_openai
        try:
            text = await complete(system, user)
        except EngineError:
            raise
        except Exception as exc:
            raise EngineError(f"{self.provider} call failed: {exc}", retryable=_is_transient(exc)) from exc
        return _parse_object(text)

    async def _complete_anthropic(self, system: str, user: str) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.MAX_TOKENS,
            temperature=0,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        blocks = [b.text for b in response.content if getattr(b, "type", "text") == "text"]
        if not blocks:
            raise EngineError("anthropic returned no text content", retryable=False)
        return "".join(blocks)

    async def _complete_openai(self, system: str, user: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=self.MAX_TOKENS,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return response.choices[0].message.content or ""


_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def _parse_object(text: str) -> dict[str, Any]:
    """Decode the judge's answer, tolerating a fenced block or prose around the object."""
    text = text.strip()
    if m := _FENCE_RE.search(text):
        text = m.group(1)
    elif not text.startswith("{") and "{" in text:
        text = text[text.index("{"): text.rindex("}") + 1]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EngineError(f"Judge returned invalid JSON: {text[:200]}", retryable=False) from exc
    if not isinstance(data, dict):
        raise EngineError(f"Judge returned {type(data).__name__}, expected an object", retryable=False)
    return data


def _is_transient(exc: Exception) -> bool:
    """Client errors (bad key, bad request) will fail again; everything else may not."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and 400 <= status < 500:
        return status in (408, 409, 429)
    return True


class ScoringEngine(Protocol):
    """External judging capability."""

    model: str

    async def score(self, prompt_context: str, timeout: float) -> Mapping[str, Any]: ...


class LLMScoringEngine:
    """Scoring engine backed by :class:`LLMClient` and the judge prompt."""

    def __init__(self, client: LLMClient | None = None, system_prompt: str = JUDGE_SYSTEM_PROMPT):
        self.client = client or LLMClient()
        self.system_prompt = system_prompt

    @property
    def model(self) -> str:
        return self.client.model

    async def score(self, prompt_context: str, timeout: float) -> Mapping[str, Any]:
        try:
            return await asyncio.wait_for(self.client.call(self.system_prompt, prompt_context), timeout)
        except TimeoutError as exc:
            raise EngineError(f"Scoring engine timed out after {timeout:.0f}s", retryable=True) from exc


class UnavailableEngine:
    """Stand-in used when no LLM client can be configured; every call fails."""

    model = ""

    def __init__(self, reason: str):
        self.reason = reason

    async def score(self, prompt_context: str, timeout: float) -> Mapping[str, Any]:
        raise EngineError(f"Scoring engine unavailable: {self.reason}")


def default_engine() -> ScoringEngine:
    """LLM engine from the environment, or :class:`UnavailableEngine` if it cannot be built."""
    try:
        return LLMScoringEngine()
    except Exception as exc:
        log.warning("LLM scoring unavailable, all evaluations will be degraded: %s", exc)
        return UnavailableEngine(str(exc))


# ---------------------------------------------------------------------------
# Response validation
# ---------------------------------------------------------------------------


@dataclass
class EngineJudgment:
    """A validated engine response."""
    scores: Scores
    evidence: list[str]
    gaps: list[str]


def compute_final_score(subscores: Mapping[str, float]) -> float:
    """Weighted 0-100 combination of the six 0-10 sub-scores."""
    total = sum(WEIGHTS[k] * float(subscores[k]) for k in SUB_SCORE_KEYS)
    return round(max(0.0, min(100.0, total * 10)), 1)


def _number(value: Any, label: str, upper: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EngineError(f"{label} is missing or not numeric: {value!r}")
    if not math.isfinite(value) or not 0 <= value <= upper:
        raise EngineError(f"{label}={value!r} is outside [0, {upper:g}]")
    return round(float(value), 1)


def _string_list(value: Any, limit: int = 10) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value[:limit] if str(v).strip()]


def validate_engine_response(raw: Any) -> EngineJudgment:
    """Validate an engine response, recomputing ``final_score`` when absent.

    Raises EngineError on any structural or range problem.
    """
    if not isinstance(raw, Mapping):
        raise EngineError(f"Engine returned {type(raw).__name__}, expected an object")
    source = raw.get("subscores", raw.get("scores", raw))
    if not isinstance(source, Mapping):
        raise EngineError("Engine response has no sub-score object")

    values = {key: _number(source.get(key), f"sub-score {key!r}", 10) for key in SUB_SCORE_KEYS}
    final = source.get("final_score", raw.get("final_score"))
    if final is None:
        values["final_score"] = compute_final_score(values)
    else:
        values["final_score"] = _number(final, "final_score", 100)

    return EngineJudgment(
        scores=Scores(**values),
        evidence=_string_list(raw.get("evidence")),
        gaps=_string_list(raw.get("gaps")),
    )


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------

_CTA_RE = re.compile(r"\b(try|start|join|sign up|get started|learn more|contact|demo)\b", re.I)
_JARGON_RE = re.compile(r"\b(synergy|leverage|paradigm|blockchain|web3|AI|ML|DeFi)\b", re.I)
_PROBLEM_RE = re.compile(r"\b(problem|issue|challenge|pain|struggle)\b", re.I)
_SOLUTION_RE = re.compile(r"\b(solution|solve|fix|address|improve)\b", re.I)
_METRIC_RE = re.compile(r"\d+\s*%|\$\d+|\d+x", re.I)
_REPO_RE = re.compile(r"(github|gitlab|bitbucket)\.(com|org)/[\w-]+/[\w-]+", re.I)
_URL_RE = re.compile(r"https?://|\.com\b|\.io\b", re.I)

# Readiness checklist points: verified items earn full points, asserted items half
READINESS_POINTS: dict[str, float] = {
    "demo_link": 2,
    "demo_video": 2,
    "repo": 2,
    "readme_run_steps": 3,
    "slides_pdf": 2,
    "screenshots": 2,
    "built_during_hack": 1,
    "known_limits_next_steps": 1,
}
_READINESS_MAX = sum(READINESS_POINTS.values())


def _scale(raw: float, maximum: float) -> float:
    return round(max(0.0, min(10.0, raw / maximum * 10)), 1)


def readiness_checklist(entry_type: str, text: str, ref: str = "") -> dict[str, str]:
    """Map each readiness item to ``verified``, ``asserted`` or ``missing``."""
    lower = text.lower()
    status = {item: "missing" for item in READINESS_POINTS}

    if _REPO_RE.search(lower):
        status["repo"] = "verified"
    if ("demo" in lower or "try" in lower) and _URL_RE.search(lower):
        status["demo_link"] = "verified" if entry_type == "link" else "asserted"
    if any(w in lower for w in ("readme", "installation", "setup", "instructions")):
        status["readme_run_steps"] = "asserted"
    if any(w in lower for w in ("built", "created", "developed")) and any(
        w in lower for w in ("weekend", "hackathon", "48 hours", "24 hours")
    ):
        status["built_during_hack"] = "verified"
    if any(w in lower for w in ("limitation", "next step", "future", "roadmap")):
        status["known_limits_next_steps"] = "asserted"

    if entry_type in ("file", "image"):
        name = (ref or text).lower().rsplit("/", 1)[-1]
        if "demo" in name and name.endswith((".mp4", ".mov", ".webm")):
            status["demo_video"] = "verified"
        if name.endswith((".pdf", ".pptx", ".ppt")):
            status["slides_pdf"] = "verified"
        if "screen" in name or (entry_type == "image" and ("ui" in name or "app" in name)):
            status["screenshots"] = "verified"
    return status


def readiness_score(checklist: Mapping[str, str]) -> float:
    """Readiness on the 0-10 scale from a checklist."""
    points = 0.0
    for item, value in READINESS_POINTS.items():
        if checklist.get(item) == "verified":
            points += value
        elif checklist.get(item) == "asserted":
            points += value / 2
    return _scale(min(points, _READINESS_MAX), _READINESS_MAX)


def heuristic_judgment(entry_type: str, content: str, description: str = "") -> EngineJudgment:
    """Score an entry from its own text with fixed keyword heuristics."""
    text = "\n".join(part for part in (description, content) if part).strip()
    if not text:
        return EngineJudgment(scores=Scores(), evidence=[], gaps=["No content provided"])

    lower = text.lower()
    word_count = len(text.split())
    has_hook = len(text.split(".")[0]) < 100
    has_cta = bool(_CTA_RE.search(text))
    has_numbers = bool(re.search(r"\d+", text))
    has_jargon = bool(_JARGON_RE.search(text))
    has_problem = bool(_PROBLEM_RE.search(text))
    has_solution = bool(_SOLUTION_RE.search(text))
    has_metrics = bool(_METRIC_RE.search(text))

    clarity = min(15, (5 if has_hook else 2)
                  + (5 if word_count < 200 else 3 if word_count < 400 else 1)
                  + (3 if not has_jargon else 1) + 2)
    problem_value = min(20, (5 if has_problem else 2) + (5 if has_solution else 2)
                        + (3 if has_numbers else 1) + (4 if has_metrics else 1) + 3)
    feasibility = min(10, (3 if "built" in lower else 1) + (3 if "working" in lower else 1)
                      + (2 if "demo" in lower else 0) + 2)
    originality = min(15, (5 if "first" in lower or "unique" in lower else 2)
                      + (3 if "different" in lower else 1)
                      + (3 if "novel" in lower or "innovative" in lower else 1) + 4)
    impact = min(20, (8 if has_cta else 2) + (4 if "impact" in lower else 1)
                 + (4 if "users" in lower or "customers" in lower else 1)
                 + (3 if has_metrics else 1) + 1)

    checklist = readiness_checklist(entry_type, text, ref=content.strip())
    subscores = {
        "clarity": _scale(clarity, 15),
        "problem_value": _scale(problem_value, 20),
        "feasibility_signal": _scale(feasibility, 10),
        "originality": _scale(originality, 15),
        "impact_convert": _scale(impact, 20),
        "submission_readiness": readiness_score(checklist),
    }
    subscores["final_score"] = compute_final_score(subscores)

    evidence: list[str] = []
    gaps: list[str] = []
    if has_hook:
        evidence.append("Strong opening hook")
    if has_cta:
        evidence.append("Clear call-to-action present")
    if has_metrics:
        evidence.append("Specific metrics provided")
    if has_problem and has_solution:
        evidence.append("Clear problem-solution fit")
    evidence.extend(f"Readiness: {item} {state}" for item, state in checklist.items() if state != "missing")

    if not has_hook:
        gaps.append("Missing compelling hook")
    if not has_cta:
        gaps.append("No clear call-to-action")
    if has_jargon:
        gaps.append("Too much technical jargon")
    if word_count > 400:
        gaps.append("Text too verbose")
    if not has_metrics:
        gaps.append("Missing quantified metrics")
    gaps.extend(f"Readiness: {item} missing" for item, state in checklist.items() if state == "missing")

    return EngineJudgment(scores=Scores(**subscores), evidence=evidence, gaps=gaps)


def generate_recommendations(scores: Scores, gaps: list[str]) -> list[str]:
    """Up to three concrete next steps, highest-value first."""
    recommendations = [g for g in gaps if not g.startswith("Readiness:")][:2]
    if scores.submission_readiness < 10:
        possible = (10 - scores.submission_readiness) * WEIGHTS["submission_readiness"] * 10
        recommendations.append(f"Complete submission checklist (+{possible:.1f} pts possible)")
    if scores.clarity < 6.7:
        recommendations.append("Improve message clarity and add compelling hook")
    if scores.problem_value < 6:
        recommendations.append("Better articulate the problem and add metrics")
    if scores.impact_convert < 5:
        recommendations.append("Add clear call-to-action for conversion")
    return recommendations[:3]


def build_evaluation(judgment: EngineJudgment, *, degraded: bool, model: str) -> Evaluation:
    """Wrap a judgment into an :class:`Evaluation` (delta is filled in at commit time)."""
    return Evaluation(
        scores=judgment.scores,
        evidence=judgment.evidence,
        gaps=judgment.gaps,
        recommendations=generate_recommendations(judgment.scores, judgment.gaps),
        delta=Delta(),
        degraded=degraded,
        llm_model=model,
        evaluated_at=datetime.now(UTC),
    )


def fallback_evaluation(entry_type: str, content: str, description: str = "") -> Evaluation:
    """Deterministic degraded evaluation. Never raises."""
    try:
        judgment = heuristic_judgment(entry_type, content or "", description or "")
    except Exception:
        log.exception("Heuristic scoring failed, using zero evaluation")
        judgment = EngineJudgment(scores=Scores(), evidence=[], gaps=["Content could not be analysed"])
    return build_evaluation(judgment, degraded=True, model=FALLBACK_MODEL)
