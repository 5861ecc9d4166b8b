"""Extraction and validation of trading decisions from free-form LLM output."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


@dataclass
class ExtractionResult:
    """Outcome of running the extraction pipeline over one response."""

    payload: Optional[Dict[str, Any]] = None
    strategy: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.payload is not None


def clean_response(raw_response: str) -> str:
    """Drop reasoning blocks some models emit before the answer."""
    return _THINK_BLOCK.sub("", raw_response).strip()


def _from_fenced_block(text: str) -> Optional[str]:
    match = _FENCED_BLOCK.search(text)
    return match.group(1) if match else None


def _from_brace_match(text: str) -> Optional[str]:
    """Return the first balanced {...} substring, skipping braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        start = text.find("{", start + 1)
    return None


def _from_whole_response(text: str) -> Optional[str]:
    return text.strip() or None


class DecisionParser:
    """Parses LLM output into a validated decision payload."""

    ALLOWED_ACTIONS = {"LONG", "SHORT", "CLOSE", "HOLD"}
    ACTION_ALIASES = {
        "BUY": "LONG",
        "SELL": "SHORT",
        "CLOSE_LONG": "CLOSE",
        "CLOSE_SHORT": "CLOSE",
    }

    EXTRACTORS: List[Tuple[str, Callable[[str], Optional[str]]]] = [
        ("fenced", _from_fenced_block),
        ("brace", _from_brace_match),
        ("whole", _from_whole_response),
    ]

    def extract(self, raw_response: str) -> ExtractionResult:
        """
        Try each extraction strategy in order and validate after each.

        Strategies: fenced code block, first brace-matched object, whole response.
        Never raises; failure is reported through the result.

        Args:
            raw_response: Raw string response from the LLM

        Returns:
            ExtractionResult with a normalized payload, or the collected errors
        """
        result = ExtractionResult()
        if not isinstance(raw_response, str) or not raw_response.strip():
            result.errors.append("empty response")
            return result

        cleaned = clean_response(raw_response)
        for name, extractor in self.EXTRACTORS:
            candidate = extractor(cleaned)
            if candidate is None:
                result.errors.append(f"{name}: no candidate")
                continue
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError as e:
                result.errors.append(f"{name}: JSON parsing failed ({e.msg})")
                continue

            payload, problems = self.validate(data)
            if problems:
                result.errors.append(f"{name}: {'; '.join(problems)}")
                continue

            result.payload = payload
            result.strategy = name
            logger.debug(f"Extracted decision via {name} strategy")
            return result

        logger.warning(f"All extraction strategies failed: {result.errors}. Raw response: {raw_response[:200]}")
        return result

    def validate(self, data: Any) -> Tuple[Optional[Dict[str, Any]], List[str]]:
        """
        Validate and normalize a decoded JSON object.

        Args:
            data: Decoded JSON value

        Returns:
            (payload, problems): payload is None when problems is non-empty
        """
        if not isinstance(data, dict):
            return None, [f"parsed JSON is not an object ({type(data).__name__})"]

        problems = []

        action = data.get("action")
        if isinstance(action, str):
            action = action.strip().upper()
            action = self.ACTION_ALIASES.get(action, action)
        if action not in self.ALLOWED_ACTIONS:
            problems.append(f"invalid action {data.get('action')!r}")

        confidence = data.get("confidence")
        if not _is_number(confidence):
            problems.append(f"confidence must be numeric, got {confidence!r}")
        elif not 0.0 <= confidence <= 1.0:
            problems.append(f"confidence {confidence} out of range [0, 1]")

        optional_numbers = {}
        for key in ("stop_loss", "leverage", "position_size_usd"):
            value = data.get(key)
            if value is None:
                optional_numbers[key] = None
            elif _is_number(value):
                optional_numbers[key] = float(value)
            else:
                problems.append(f"{key} must be numeric, got {value!r}")

        take_profit = data.get("take_profit", data.get("take_profit_levels"))
        if take_profit is None:
            take_profit_levels = []
        elif _is_number(take_profit):
            take_profit_levels = [float(take_profit)]
        elif isinstance(take_profit, list) and all(_is_number(tp) for tp in take_profit):
            take_profit_levels = [float(tp) for tp in take_profit]
        else:
            take_profit_levels = []
            problems.append(f"take_profit must be a number or list of numbers, got {take_profit!r}")

        if problems:
            return None, problems

        reasoning = data.get("reasoning", data.get("reason", ""))
        if not isinstance(reasoning, str):
            reasoning = str(reasoning)

        return {
            "action": action,
            "confidence": float(confidence),
            "reasoning": reasoning,
            "stop_loss": optional_numbers["stop_loss"],
            "take_profit_levels": take_profit_levels,
            "leverage": optional_numbers["leverage"],
            "position_size_usd": optional_numbers["position_size_usd"],
        }, []


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
