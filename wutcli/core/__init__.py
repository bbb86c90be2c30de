"""Core modules for wut."""

from wutcli.core.analytics import aggregate, summarize
from wutcli.core.config import AgentConfig, ConfigError, ConfigLoader, RetryPolicy, validate_config
from wutcli.core.console_reporter import ConsoleReporter
from wutcli.core.evidence import EvidenceCollector, EvidenceStore
from wutcli.core.executor import StepExecutor
from wutcli.core.healing import HealingEngine
from wutcli.core.orchestrator import RunJob, RunOrchestrator, RunPool
from wutcli.core.parser import ParseError, ScriptParser
from wutcli.core.report import ReportWriter
from wutcli.core.resolver import LocatorResolver, Resolution
from wutcli.core.run_context import RunContext
from wutcli.core.session import BrowserSession, SessionError

__all__ = [
    "AgentConfig",
    "BrowserSession",
    "ConfigError",
    "ConfigLoader",
    "ConsoleReporter",
    "EvidenceCollector",
    "EvidenceStore",
    "HealingEngine",
    "LocatorResolver",
    "ParseError",
    "ReportWriter",
    "Resolution",
    "RetryPolicy",
    "RunContext",
    "RunJob",
    "RunOrchestrator",
    "RunPool",
    "ScriptParser",
    "SessionError",
    "StepExecutor",
    "aggregate",
    "summarize",
    "validate_config",
]
