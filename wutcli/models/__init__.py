"""Data models for wut."""

from wutcli.models.result import (
    Evidence,
    FailureKind,
    HealingSuggestion,
    LocatorHealth,
    NetworkRequest,
    RunAnalytics,
    RunEnvironment,
    RunReport,
    RunStatus,
    RunSummary,
    StepError,
    StepResult,
    StepStatus,
)
from wutcli.models.script import (
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

__all__ = [
    "AssertStep",
    "Assertion",
    "ClickStep",
    "Evidence",
    "FailureKind",
    "Fingerprint",
    "HealingSuggestion",
    "Locator",
    "LocatorHealth",
    "NavigateStep",
    "NetworkRequest",
    "RunAnalytics",
    "RunEnvironment",
    "RunReport",
    "RunStatus",
    "RunSummary",
    "SelectStep",
    "StepError",
    "StepResult",
    "StepStatus",
    "Target",
    "TestScript",
    "TestStep",
    "TypeStep",
    "WaitStep",
]
