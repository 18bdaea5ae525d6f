"""Prometheus metrics for automation executions."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

AUTOMATION_EXECUTIONS = Counter(
    "automation_executions_total",
    "Automation runs by trigger type and overall outcome",
    ["trigger_type", "status"],  # status: success, partial_failure, failure
)

AUTOMATION_ACTIONS = Counter(
    "automation_actions_total",
    "Executed automation actions",
    ["action_type", "status"],  # status: success, failure
)

AUTOMATION_DURATION = Histogram(
    "automation_execution_seconds",
    "Wall time of an automation action pipeline",
    ["trigger_type"],
)

AUTOMATION_LOOP_WARNINGS = Counter(
    "automation_loop_warnings_total",
    "Potential feedback loops reported when a workspace rule set is loaded",
)
