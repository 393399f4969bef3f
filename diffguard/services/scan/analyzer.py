"""Batch analyzer — one security-review request per batch.

Builds the review prompt for a batch, calls the reviewer through
``llm_client.chat`` (which owns the timeout and the linear-backoff retry),
then pulls the first JSON array out of the reply and keeps only the
elements that pass ``Vulnerability`` validation.
"""

import json
import logging
import re
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from diffguard.clients import llm_client
from diffguard.config import get_llm_api_key, settings
from diffguard.errors import AnalysisError, VulnerabilityValidationError

from .models import Batch, ChangedFile, Vulnerability

logger = logging.getLogger(__name__)

ChatFn = Callable[..., Awaitable[dict]]

_SYSTEM_PROMPT = "You are a security-focused static code analysis tool."

_FOCUS_AREAS = """\
Analyze the code for security vulnerabilities and issues. Focus on:
1. Security vulnerabilities (SQL injection, XSS, CSRF, insecure authentication, etc.)
2. Input validation issues
3. Authentication/authorization flaws
4. Insecure cryptography
5. Data exposure issues
6. Dependencies with known vulnerabilities
7. Code quality issues that may lead to security problems"""

_OUTPUT_FORMAT = """\
For each issue found, return a JSON object with the following fields:
- type: The type of vulnerability or issue
- severity: Use only 'low', 'medium', 'high', or 'critical'
- description: A detailed explanation of the issue
- filePath: The path of the file containing the issue, exactly as given above
- lineNumber: Approximate line number where the issue exists (if possible)
- originalCode: The vulnerable code snippet
- suggestedCode: A corrected version of the snippet
- potentialImpact: What an attacker could achieve
- potentialSolution: How to fix the issue
- potentialRisk: The risk to the application and its users
- potentialMitigation: Short-term mitigations until it is fixed
- potentialPrevention: How to prevent this class of issue in the future
- potentialDetection: How to detect exploitation attempts

If no issues are found, return an empty array. Only return the JSON array with no other text."""

_DIFF_SCOPE = """\
The files are shown as unified diffs. Only report issues introduced or touched by the
changed lines (lines starting with '+' or '-'); use the surrounding context lines only to
understand them. Report line numbers from the new version of the file."""


def _render_file(changed: ChangedFile, diff_only: bool) -> str:
    language = changed.language
    if diff_only and changed.patch is not None:
        return f"File: {changed.path} ({language}, diff)\n```diff\n{changed.patch}\n```"
    return f"File: {changed.path} ({language})\n```{language}\n{changed.content or ''}\n```"


def build_prompt(batch: Batch) -> str:
    """Return the user prompt for *batch* (single-file or combined form)."""
    diff_only = batch.diff_only
    scope = f"\n{_DIFF_SCOPE}\n" if diff_only else ""

    if len(batch.files) == 1:
        changed = batch.files[0]
        return (
            "You are a security expert code reviewer with expertise in identifying security "
            "vulnerabilities, bugs, and code quality issues.\n"
            f"Your task is to analyze the following {changed.language} code for security "
            "vulnerabilities and quality issues.\n"
            f"{scope}\n"
            f"{_render_file(changed, diff_only)}\n\n"
            f"{_FOCUS_AREAS}\n\n{_OUTPUT_FORMAT}\n"
        )

    sections = "\n\n".join(
        f"--- [{i}/{len(batch.files)}] ---\n{_render_file(f, diff_only)}"
        for i, f in enumerate(batch.files, start=1)
    )
    return (
        "You are a security expert code reviewer with expertise in identifying security "
        "vulnerabilities, bugs, and code quality issues.\n"
        f"Your task is to analyze the following {len(batch.files)} files for security "
        "vulnerabilities and quality issues. Review every file and attribute each issue "
        "to the file it occurs in.\n"
        f"{scope}\n"
        f"{sections}\n\n"
        f"{_FOCUS_AREAS}\n\n{_OUTPUT_FORMAT}\n"
    )


def extract_json_array(text: str) -> list:
    """Return the first bracketed JSON array literal found in *text*.

    Raises ``AnalysisError`` when the text holds no parseable array.
    """
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\[", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, list):
            return value
    raise AnalysisError("No JSON array found in analysis response")


def validate_vulnerability(item: Any) -> Vulnerability:
    """Validate one reported element; raises ``VulnerabilityValidationError``."""
    if not isinstance(item, dict):
        raise VulnerabilityValidationError(f"Expected an object, got {type(item).__name__}")
    try:
        return Vulnerability.model_validate(item)
    except (OverflowError, TypeError) as exc:
        raise VulnerabilityValidationError(f"Unusable value: {exc}") from exc
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise VulnerabilityValidationError(f"Invalid fields: {fields}") from exc


def parse_vulnerabilities(text: str, batch: Batch) -> list[Vulnerability]:
    """Extract and validate findings from a raw reviewer reply.

    Elements that fail validation are dropped; the rest are kept.  In a
    single-file batch a finding without ``filePath`` is attributed to
    that file.
    """
    items = extract_json_array(text)
    found: list[Vulnerability] = []
    dropped = 0
    for item in items:
        try:
            vuln = validate_vulnerability(item)
        except VulnerabilityValidationError as exc:
            dropped += 1
            logger.debug("Discarding reported finding: %s", exc)
            continue
        if not vuln.file_path and len(batch.files) == 1:
            vuln.file_path = batch.files[0].path
        found.append(vuln)
    if dropped:
        logger.warning(
            "Discarded %d of %d reported findings that failed validation (%s)",
            dropped, len(items), ", ".join(batch.paths),
        )
    return found


class BatchAnalyzer:
    """Turns a batch into validated ``Vulnerability`` records."""

    def __init__(
        self,
        *,
        chat: ChatFn | None = None,
        api_key: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._chat = chat or llm_client.chat
        self._api_key = api_key
        self._model = model or settings.LLM_SCAN_MODEL
        self._provider = provider or settings.LLM_PROVIDER
        self._max_tokens = max_tokens or settings.LLM_SCAN_MAX_TOKENS
        self._temperature = temperature if temperature is not None else settings.LLM_SCAN_TEMPERATURE

    async def analyze(self, batch: Batch) -> list[Vulnerability]:
        """Review *batch*; raises ``AnalysisError`` when no usable reply is obtained."""
        if not batch.files:
            return []
        api_key = self._api_key if self._api_key is not None else get_llm_api_key()
        if not api_key:
            raise AnalysisError(f"No API key configured for LLM provider '{self._provider}'")

        try:
            response = await self._chat(
                api_key=api_key,
                model=self._model,
                system_prompt=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_prompt(batch)}],
                max_tokens=self._max_tokens,
                provider=self._provider,
                temperature=self._temperature,
            )
        except (httpx.HTTPError, ValueError) as exc:
            raise AnalysisError(
                f"Analysis request failed for {len(batch.files)} file(s): {exc}"
            ) from exc

        text = (response or {}).get("text") or ""
        vulnerabilities = parse_vulnerabilities(text, batch)
        logger.info(
            "Batch of %d file(s) analysed: %d finding(s)", len(batch.files), len(vulnerabilities),
        )
        return vulnerabilities
