"""Prometheus metrics configuration."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
)


# Application info
APP_INFO = Info("bluegreen", "Blue-green deployment orchestrator info")
APP_INFO.info({
    "version": "1.0.0",
    "service": "bluegreen-orchestrator",
})

# Deployment metrics
DEPLOYMENTS_TOTAL = Counter(
    "bluegreen_deployments_total",
    "Total number of deployment attempts by final phase",
    ["final_phase"],
)

PHASE_DURATION = Histogram(
    "bluegreen_phase_duration_seconds",
    "Time spent in each deployment phase",
    ["phase"],
    buckets=[0.5, 1, 5, 15, 30, 60, 120, 300, 600, 900],
)

ACTIVE_DEPLOYMENTS = Gauge(
    "bluegreen_active_deployments",
    "Number of deployment attempts currently in flight",
)

ROLLBACKS_TOTAL = Counter(
    "bluegreen_rollbacks_total",
    "Total number of rollbacks by result",
    ["result"],  # "rolled_back", "failed", "noop"
)

# Rollout monitor metrics
MONITOR_POLLS_TOTAL = Counter(
    "bluegreen_monitor_polls_total",
    "Total number of rollout monitor polls",
    ["result"],  # "in_progress", "completed", "failed", "error"
)

MONITOR_OUTCOMES_TOTAL = Counter(
    "bluegreen_monitor_outcomes_total",
    "Terminal rollout monitor outcomes",
    ["outcome"],
)

# Health metrics
HEALTHY_INSTANCE_RATIO = Gauge(
    "bluegreen_healthy_instance_ratio",
    "Ratio of healthy instances after the last verification",
    ["service"],
)

# Infrastructure metrics
CONTROL_PLANE_CALLS_TOTAL = Counter(
    "bluegreen_control_plane_calls_total",
    "Total control-plane API calls",
    ["operation", "result"],
)

DISTRIBUTED_LOCK_OPERATIONS = Counter(
    "bluegreen_distributed_lock_operations_total",
    "Total distributed lock operations",
    ["operation", "result"],  # operation: acquire/release, result: success/failure
)
