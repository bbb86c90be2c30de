"""YAML/JSON test script parser."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from wutcli.core.config import normalize_keys
from wutcli.models.script import (
    ASSERTION_TYPES,
    LOCATOR_STRATEGIES,
    STEP_TYPES,
    AssertStep,
    Assertion,
    ClickStep,
    Fingerprint,
    Locator,
    NavigateStep,
    SelectStep,
    Target,
    TestScript,
    TestStep,
    TypeStep,
    WaitStep,
)

# Assertion spellings used by recorded plans
ASSERTION_ALIASES = {
    "elementvisible": "visible",
    "element_visible": "visible",
    "textcontains": "text_contains",
    "textequals": "text_equals",
    "urlcontains": "url_contains",
    "titlecontains": "title_contains",
}

ACTION_ALIASES = {"input": "type", "fill": "type", "goto": "navigate", "tap": "click"}

_PREFIX_RE = re.compile(r"^(id|css|xpath|name|text|linktext|partiallinktext|url)=(.+)$", re.S)
_DURATION_RE = re.compile(r"^\s*\d+(\.\d+)?\s*(ms|s)?\s*$")


class ParseError(Exception):
    """Error parsing test script."""

    pass


def _parse_duration_ms(value: Any, field_name: str) -> int:
    """Parse '5s', '500ms' or a number of milliseconds."""
    if isinstance(value, bool):
        raise ParseError(f"Invalid duration for {field_name}: {value}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value.strip().lower()
        try:
            if text.endswith("ms"):
                return int(float(text[:-2]))
            if text.endswith("s"):
                return int(float(text[:-1]) * 1000)
            return int(float(text))
        except ValueError:
            pass
    raise ParseError(f"Invalid duration for {field_name}: {value!r}")


class ScriptParser:
    """Parse script files into TestScript objects."""

    ACTIONS = frozenset(STEP_TYPES)

    @classmethod
    def parse(cls, path: Path) -> TestScript:
        """Parse a YAML or JSON script file.

        Args:
            path: Path to script

        Returns:
            Parsed TestScript

        Raises:
            ParseError: If file is invalid
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ParseError(f"Script file not found: {path}")
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML: {e}")

        return cls.parse_data(data, path=str(path))

    @classmethod
    def parse_data(cls, data: Any, path: str | None = None) -> TestScript:
        """Parse an already-loaded script document."""
        if data is None:
            raise ParseError("Script file is empty")

        # A bare list is shorthand for a script with only steps
        if isinstance(data, list):
            data = {"steps": data}

        if not isinstance(data, dict):
            raise ParseError("Script must be a mapping or a list of steps")

        data = {cls._key(k): v for k, v in data.items()}
        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list) or not raw_steps:
            raise ParseError("Script must contain a non-empty 'steps' list")

        steps = [cls._parse_step(item, index) for index, item in enumerate(raw_steps, start=1)]

        seen: set[str] = set()
        for step in steps:
            if step.id in seen:
                raise ParseError(f"Duplicate step id: {step.id}")
            seen.add(step.id)

        return TestScript(
            steps=tuple(steps),
            objective=str(data.get("objective") or ""),
            base_url=str(data.get("base_url") or ""),
            path=path,
        )

    @staticmethod
    def _key(key: Any) -> str:
        return normalize_keys({str(key): None}).popitem()[0]

    @classmethod
    def _parse_step(cls, item: Any, index: int) -> TestStep:
        """Parse a single step."""
        if not isinstance(item, dict):
            raise ParseError(f"Invalid step #{index}: {item!r}")

        data = {cls._key(k): v for k, v in item.items()}
        action, shorthand = cls._find_action(data, index)
        step_id = str(data.get("id") or f"step-{index}")

        common: dict[str, Any] = {
            "id": step_id,
            "assertions": cls._parse_assertions(data.get("assertions"), step_id),
            "tags": cls._parse_tags(data),
            "description": data.get("description"),
        }
        if data.get("timeout") is not None:
            common["timeout_ms"] = _parse_duration_ms(data["timeout"], f"{step_id}.timeout")
        elif data.get("timeout_ms") is not None:
            common["timeout_ms"] = _parse_duration_ms(data["timeout_ms"], f"{step_id}.timeout_ms")

        # "wait: 2s" is a fixed wait, "wait: '#spinner'" waits for an element
        if action == "wait" and cls._is_duration(shorthand) and "duration" not in data:
            data["duration"], shorthand = shorthand, None

        raw_target = data.get("target", shorthand if action != "navigate" else None)

        if action == "navigate":
            url = data.get("url") or data.get("value") or shorthand
            if url is None and isinstance(data.get("target"), dict):
                url = cls._parse_target(data["target"], step_id, allow_url=True).primary.value
            if not url or not isinstance(url, str):
                raise ParseError(f"Step {step_id}: navigate requires a 'url'")
            return NavigateStep(url=url, **common)

        target = cls._parse_target(raw_target, step_id) if raw_target is not None else None

        if action in ("click", "type", "select") and target is None:
            raise ParseError(f"Step {step_id}: {action} requires a 'target'")

        if action == "click":
            step: TestStep = ClickStep(element=target, **common)
        elif action in ("type", "select"):
            value = data.get("value", data.get("text"))
            if value is None:
                raise ParseError(f"Step {step_id}: {action} requires a 'value'")
            cls_ = TypeStep if action == "type" else SelectStep
            step = cls_(element=target, value=str(value), **common)
        elif action == "wait":
            duration = data.get("duration")
            if target is None and duration is None:
                raise ParseError(f"Step {step_id}: wait requires a 'target' or a 'duration'")
            duration_ms = (
                _parse_duration_ms(duration, f"{step_id}.duration") if duration is not None else None
            )
            step = WaitStep(element=target, duration_ms=duration_ms, **common)
        else:
            if not common["assertions"]:
                raise ParseError(f"Step {step_id}: assert requires 'assertions'")
            step = AssertStep(element=target, **common)

        for assertion in step.assertions:
            if assertion.type.startswith("count_") and step.target is None:
                raise ParseError(f"Step {step_id}: {assertion.type} assertion requires a 'target'")
        return step

    @staticmethod
    def _is_duration(value: Any) -> bool:
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return True
        return isinstance(value, str) and bool(_DURATION_RE.match(value))

    @classmethod
    def _find_action(cls, data: dict[str, Any], index: int) -> tuple[str, Any]:
        """Return (action, shorthand value) for explicit or shorthand syntax.

        Explicit: ``{action: click, target: ...}``.
        Shorthand: ``{click: "#submit"}`` / ``{navigate: "/login"}``.
        """
        if "action" in data:
            action = str(data["action"]).strip().lower()
            action = ACTION_ALIASES.get(action, action)
            if action not in cls.ACTIONS:
                raise ParseError(f"Step #{index}: unknown action '{data['action']}'")
            return action, None

        for key, value in data.items():
            action = ACTION_ALIASES.get(key, key)
            if action in cls.ACTIONS:
                return action, value

        raise ParseError(f"Step #{index}: no action found in {data!r}")

    @classmethod
    def _parse_target(cls, raw: Any, step_id: str, allow_url: bool = False) -> Target:
        """Parse a target.

        Accepts a locator string, a list of locator strings (primary first),
        or a mapping with ``primary``, ``fallbacks`` and ``fingerprint``.
        """
        if isinstance(raw, str):
            return Target(primary=cls._parse_locator(raw, step_id, allow_url))

        if isinstance(raw, list):
            if not raw:
                raise ParseError(f"Step {step_id}: empty target list")
            locators = [cls._parse_locator(item, step_id, allow_url) for item in raw]
            return Target(primary=locators[0], fallbacks=tuple(locators[1:]))

        if not isinstance(raw, dict):
            raise ParseError(f"Step {step_id}: invalid target {raw!r}")

        if "primary" not in raw:
            # A single locator mapping: {by: css, value: "#x"}
            return Target(primary=cls._parse_locator(raw, step_id, allow_url))

        fallbacks = raw.get("fallbacks") or []
        if not isinstance(fallbacks, list):
            raise ParseError(f"Step {step_id}: 'fallbacks' must be a list")

        return Target(
            primary=cls._parse_locator(raw["primary"], step_id, allow_url),
            fallbacks=tuple(cls._parse_locator(f, step_id, allow_url) for f in fallbacks),
            fingerprint=cls._parse_fingerprint(raw.get("fingerprint"), step_id),
        )

    @classmethod
    def _parse_locator(cls, raw: Any, step_id: str, allow_url: bool = False) -> Locator:
        """Parse ``{by, value}`` or ``"by=value"``; bare strings are CSS or XPath."""
        if isinstance(raw, str):
            match = _PREFIX_RE.match(raw.strip())
            if match:
                by, value = match.group(1), match.group(2)
            elif raw.strip().startswith(("/", "(")):
                by, value = "xpath", raw.strip()
            else:
                by, value = "css", raw.strip()
        elif isinstance(raw, dict):
            by = str(raw.get("by") or "").strip().lower()
            value = raw.get("value")
            value = "" if value is None else str(value)
        else:
            raise ParseError(f"Step {step_id}: invalid locator {raw!r}")

        if by not in LOCATOR_STRATEGIES:
            raise ParseError(f"Step {step_id}: unsupported locator strategy '{by}'")
        if by == "url" and not allow_url:
            raise ParseError(f"Step {step_id}: 'url' locators are only valid for navigate")
        if not value.strip():
            raise ParseError(f"Step {step_id}: locator '{by}' has an empty value")
        return Locator(by=by, value=value)

    @staticmethod
    def _parse_fingerprint(raw: Any, step_id: str) -> Fingerprint | None:
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise ParseError(f"Step {step_id}: fingerprint must be a mapping")
        attrs = raw.get("attrs") or raw.get("attributes") or {}
        if not isinstance(attrs, dict):
            raise ParseError(f"Step {step_id}: fingerprint attrs must be a mapping")
        return Fingerprint(
            tag=str(raw.get("tag") or ""),
            text=str(raw.get("text") or ""),
            attrs={str(k): str(v) for k, v in attrs.items()},
        )

    @classmethod
    def _parse_assertions(cls, raw: Any, step_id: str) -> tuple[Assertion, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            raise ParseError(f"Step {step_id}: 'assertions' must be a list")

        assertions = []
        for item in raw:
            if not isinstance(item, dict) or "type" not in item:
                raise ParseError(f"Step {step_id}: invalid assertion {item!r}")
            kind = cls._key(str(item["type"]).strip())
            kind = ASSERTION_ALIASES.get(kind, kind)
            if kind not in ASSERTION_TYPES:
                raise ParseError(f"Step {step_id}: unsupported assertion type '{item['type']}'")
            value = "" if item.get("value") is None else str(item["value"])
            if kind.startswith("count_") and not value.strip().isdigit():
                raise ParseError(f"Step {step_id}: {kind} requires a non-negative integer value")
            assertions.append(Assertion(type=kind, value=value))
        return tuple(assertions)

    @staticmethod
    def _parse_tags(data: dict[str, Any]) -> tuple[str, ...]:
        tags = data.get("tags")
        metadata = data.get("metadata")
        if tags is None and isinstance(metadata, dict):
            tags = metadata.get("tags")
        if tags is None:
            return ()
        if isinstance(tags, str):
            tags = [tags]
        return tuple(str(t) for t in tags)
