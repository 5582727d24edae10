"""Suggestion generation from analyses, baselines and recent metrics."""

from __future__ import annotations

import fnmatch
import logging
import math
import uuid
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from configflow.core.baseline import average, stability
from configflow.models.enums import Category, Priority, RiskLevel, VirtualKind
from configflow.models.runtime import (
    ConfigParameter,
    ImpactAnalysis,
    MetricsSnapshot,
    OptimizationSuggestion,
    PerformanceBaseline,
    RealFile,
    VirtualTarget,
)

logger = logging.getLogger("configflow.optimizer")

POOR_PERFORMER_THRESHOLD = -0.3
MEMORY_PRESSURE = 85.0
CPU_PRESSURE = 70.0
UNSTABLE_BELOW = 0.7
STABILITY_TARGET = 0.9
MEMORY_TARGET = 80.0
GOLDEN_RATIO = 1.618
LATEST_WINDOW = 5


@dataclass(frozen=True, slots=True)
class LatestMetrics:
    cpu_usage: float
    memory_usage: float
    stability_score: float


def latest_metrics(history: Sequence[MetricsSnapshot]) -> LatestMetrics:
    """Average the most recent snapshots."""
    if not history:
        return LatestMetrics(cpu_usage=0.0, memory_usage=0.0, stability_score=1.0)
    recent = list(history)[-LATEST_WINDOW:]
    cpu = [s.cpu_percent for s in recent]
    memory = [s.memory_percent for s in recent]
    return LatestMetrics(
        cpu_usage=average(cpu),
        memory_usage=average(memory),
        stability_score=(stability(cpu) + stability(memory)) / 2,
    )


def _new_id() -> str:
    return f"opt_{uuid.uuid4().hex[:16]}"


# --- Rule catalogue ---


@dataclass(frozen=True, slots=True)
class OptimizationRule:
    """Static domain knowledge: where a parameter looks tunable and what to do."""

    rule_id: str
    name: str
    description: str
    config_pattern: str
    parameter_pattern: str
    condition: Callable[[Any, LatestMetrics], bool]
    build: Callable[[ConfigParameter, LatestMetrics], OptimizationSuggestion]
    priority: Priority
    category: Category

    def matches(self, param: ConfigParameter) -> bool:
        name = param.config_file.replace("\\", "/").rsplit("/", 1)[-1]
        return fnmatch.fnmatch(name, self.config_pattern) and fnmatch.fnmatch(
            param.key_path.lower(), self.parameter_pattern
        )


def _pool_suggestion(param: ConfigParameter, m: LatestMetrics) -> OptimizationSuggestion:
    if m.cpu_usage > 50:
        optimal = max(5, param.value * 0.7)
    else:
        optimal = min(20, param.value * 1.2)
    return OptimizationSuggestion(
        suggestion_id=_new_id(),
        priority=Priority.MEDIUM,
        category=Category.PERFORMANCE,
        target=RealFile(param.config_file),
        parameter=param.key_path,
        current_value=param.value,
        suggested_value=round(optimal),
        expected_impact="Optimize connection pool for better resource utilization",
        reasoning=("Suboptimal pool size detected", "Adjust based on CPU usage patterns"),
        confidence=0.7,
        estimated_gain={"cpu": 10, "memory": 5},
        risk_level=RiskLevel.MEDIUM,
        rollback_plan=f"Revert to {param.value}",
    )


def _timeout_suggestion(param: ConfigParameter, m: LatestMetrics) -> OptimizationSuggestion:
    if m.stability_score < 0.5:
        optimal = param.value * 1.5
    else:
        optimal = max(5000, param.value * 0.8)
    return OptimizationSuggestion(
        suggestion_id=_new_id(),
        priority=Priority.MEDIUM,
        category=Category.STABILITY,
        target=RealFile(param.config_file),
        parameter=param.key_path,
        current_value=param.value,
        suggested_value=round(optimal),
        expected_impact="Optimize timeout for better stability",
        reasoning=("Suboptimal timeout detected", "Adjust based on stability patterns"),
        confidence=0.6,
        estimated_gain={"stability": 0.2},
        risk_level=RiskLevel.LOW,
        rollback_plan=f"Revert to {param.value}ms",
    )


def _memory_limit_suggestion(param: ConfigParameter, m: LatestMetrics) -> OptimizationSuggestion:
    return OptimizationSuggestion(
        suggestion_id=_new_id(),
        priority=Priority.HIGH,
        category=Category.MEMORY,
        target=RealFile(param.config_file),
        parameter=param.key_path,
        current_value=param.value,
        suggested_value=f"{param.value} --max-old-space-size=4096",
        expected_impact="Optimize memory allocation for better performance",
        reasoning=("High memory usage detected", "Cap the runtime heap size"),
        confidence=0.8,
        estimated_gain={"memory": 20},
        risk_level=RiskLevel.LOW,
        rollback_plan="Remove memory limit flag",
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


BUILTIN_RULES: tuple[OptimizationRule, ...] = (
    OptimizationRule(
        rule_id="runtime_memory_limit",
        name="Runtime Memory Optimization",
        description="Cap the interpreter heap when memory is under pressure",
        config_pattern="package.json",
        parameter_pattern="scripts.*",
        condition=lambda v, m: isinstance(v, str) and "node" in v and m.memory_usage > 80,
        build=_memory_limit_suggestion,
        priority=Priority.HIGH,
        category=Category.MEMORY,
    ),
    OptimizationRule(
        rule_id="connection_pool_size",
        name="Connection Pool Optimization",
        description="Keep database connection pools in a sensible range",
        config_pattern="*",
        parameter_pattern="*pool*",
        condition=lambda v, m: _is_number(v) and (v > 50 or v < 5) and m.cpu_usage > 10,
        build=_pool_suggestion,
        priority=Priority.MEDIUM,
        category=Category.PERFORMANCE,
    ),
    OptimizationRule(
        rule_id="timeout_optimization",
        name="Timeout Configuration Optimization",
        description="Bring extreme timeout values back towards stable defaults",
        config_pattern="*",
        parameter_pattern="*timeout*",
        condition=lambda v, m: _is_number(v)
        and (v > 30000 or v < 1000)
        and m.stability_score < 0.8,
        build=_timeout_suggestion,
        priority=Priority.MEDIUM,
        category=Category.STABILITY,
    ),
)


def rank_suggestions(suggestions: Iterable[OptimizationSuggestion]) -> list[OptimizationSuggestion]:
    """Dedupe by (target, parameter) keeping the first, then sort by priority and confidence."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for s in suggestions:
        key = (s.target_label, s.parameter)
        if key in seen:
            continue
        seen.add(key)
        unique.append(s)
    # sorted() is stable, so equal keys keep pass order
    return sorted(unique, key=lambda s: (-s.priority.rank, -s.confidence))


class OptimizationEngine:
    """Deterministic suggestion generator. No learning, no randomness in sizing."""

    def __init__(self, rules: Sequence[OptimizationRule] = BUILTIN_RULES) -> None:
        self.rules = tuple(rules)
        self._suggestions: list[OptimizationSuggestion] = []
        logger.info("Optimization engine ready with %d rules", len(self.rules))

    def generate_suggestions(
        self,
        analyses: Sequence[ImpactAnalysis],
        baselines: Sequence[PerformanceBaseline],
        history: Sequence[MetricsSnapshot],
    ) -> list[OptimizationSuggestion]:
        latest = latest_metrics(history)

        candidates: list[OptimizationSuggestion] = []
        candidates.extend(self._poor_performers(analyses))
        candidates.extend(self._resource_pressure(latest))
        candidates.extend(self._stability_issues(baselines))
        candidates.extend(self._arithmetic_sizing(latest))

        ranked = rank_suggestions(candidates)
        self._suggestions.extend(ranked)
        self._log_summary(ranked)
        return ranked

    def _poor_performers(self, analyses: Sequence[ImpactAnalysis]) -> list[OptimizationSuggestion]:
        out = []
        for a in analyses:
            if a.impact_score >= POOR_PERFORMER_THRESHOLD:
                continue
            degradation = abs(a.impact_score * 100)
            out.append(
                OptimizationSuggestion(
                    suggestion_id=_new_id(),
                    priority=Priority.HIGH,
                    category=Category.PERFORMANCE,
                    target=RealFile(a.config_file),
                    parameter=a.parameter or "unknown",
                    current_value="current_config",
                    suggested_value="optimized_config",
                    expected_impact=f"Improve performance by {degradation:.1f}%",
                    reasoning=(
                        f"Configuration change caused {degradation:.1f}% performance degradation",
                        f"CPU impact: {a.cpu_delta:.2f}%",
                        f"Memory impact: {a.memory_delta:.2f}%",
                        "Consider reverting or adjusting this configuration",
                    ),
                    confidence=a.confidence,
                    estimated_gain={
                        "cpu": abs(a.cpu_delta),
                        "memory": abs(a.memory_delta),
                        "stability": abs(a.stability_delta),
                    },
                    risk_level=RiskLevel.LOW,
                    rollback_plan=f"Revert changes to {a.config_file}",
                )
            )
        return out

    def _resource_pressure(self, latest: LatestMetrics) -> list[OptimizationSuggestion]:
        out = []
        if latest.memory_usage > MEMORY_PRESSURE:
            out.append(
                OptimizationSuggestion(
                    suggestion_id=_new_id(),
                    priority=Priority.HIGH,
                    category=Category.MEMORY,
                    target=VirtualTarget(VirtualKind.SYSTEM),
                    parameter="memory_management",
                    current_value=f"{latest.memory_usage:.1f}%",
                    suggested_value="optimized_memory_settings",
                    expected_impact="Reduce memory usage by 10-20%",
                    reasoning=(
                        f"Current memory usage is {latest.memory_usage:.1f}% (high)",
                        "Consider optimizing cache sizes, connection pools, or buffer limits",
                    ),
                    confidence=0.8,
                    estimated_gain={"memory": 15},
                    risk_level=RiskLevel.MEDIUM,
                    rollback_plan="Increase limits if performance degrades",
                )
            )
        if latest.cpu_usage > CPU_PRESSURE:
            out.append(
                OptimizationSuggestion(
                    suggestion_id=_new_id(),
                    priority=Priority.MEDIUM,
                    category=Category.PERFORMANCE,
                    target=VirtualTarget(VirtualKind.SYSTEM),
                    parameter="cpu_optimization",
                    current_value=f"{latest.cpu_usage:.1f}%",
                    suggested_value="optimized_cpu_settings",
                    expected_impact="Reduce CPU usage by 5-15%",
                    reasoning=(
                        f"Current CPU usage is {latest.cpu_usage:.1f}% (high)",
                        "Consider optimizing worker processes, threading, or async operations",
                    ),
                    confidence=0.7,
                    estimated_gain={"cpu": 10},
                    risk_level=RiskLevel.MEDIUM,
                    rollback_plan="Revert to previous CPU settings",
                )
            )
        return out

    def _stability_issues(
        self, baselines: Sequence[PerformanceBaseline]
    ) -> list[OptimizationSuggestion]:
        out = []
        for b in baselines:
            if b.stability >= UNSTABLE_BELOW:
                continue
            gap = STABILITY_TARGET - b.stability
            out.append(
                OptimizationSuggestion(
                    suggestion_id=_new_id(),
                    priority=Priority.MEDIUM,
                    category=Category.STABILITY,
                    target=VirtualTarget(VirtualKind.CONFIGURATION),
                    parameter="stability_optimization",
                    current_value=f"{b.stability * 100:.1f}%",
                    suggested_value="stabilized_configuration",
                    expected_impact=f"Improve stability by {gap * 100:.1f}%",
                    reasoning=(
                        f"Current stability score is {b.stability * 100:.1f}% (low)",
                        "Consider adjusting timeout values, retry policies, or resource limits",
                    ),
                    confidence=0.6,
                    estimated_gain={"stability": gap},
                    risk_level=RiskLevel.LOW,
                    rollback_plan="Revert stability adjustments if issues occur",
                )
            )
        return out

    def _arithmetic_sizing(self, latest: LatestMetrics) -> list[OptimizationSuggestion]:
        if latest.memory_usage <= MEMORY_TARGET:
            return []
        overage = latest.memory_usage - MEMORY_TARGET
        reduction = math.ceil(overage / GOLDEN_RATIO)
        return [
            OptimizationSuggestion(
                suggestion_id=_new_id(),
                priority=Priority.MEDIUM,
                category=Category.RESOURCE,
                target=VirtualTarget(VirtualKind.ALGORITHMIC),
                parameter="memory_ratio_optimization",
                current_value=f"{latest.memory_usage:.1f}%",
                suggested_value=f"{latest.memory_usage - reduction:.1f}%",
                expected_impact=f"Reduce memory usage by {reduction:.1f}% using golden ratio sizing",
                reasoning=(
                    f"Target memory usage: {MEMORY_TARGET:.1f}%",
                    f"Overage of {overage:.1f}% divided by {GOLDEN_RATIO}",
                ),
                confidence=0.75,
                estimated_gain={"memory": float(reduction)},
                risk_level=RiskLevel.LOW,
                rollback_plan="Restore the previous memory ratio",
            )
        ]

    def evaluate_rules(
        self,
        parameters: Iterable[ConfigParameter],
        history: Sequence[MetricsSnapshot],
    ) -> list[OptimizationSuggestion]:
        """Match discovered parameters against the rule catalogue."""
        latest = latest_metrics(history)
        hits = []
        for param in parameters:
            for rule in self.rules:
                if rule.matches(param) and rule.condition(param.value, latest):
                    hits.append(rule.build(param, latest))
        return rank_suggestions(hits)

    def _log_summary(self, suggestions: Sequence[OptimizationSuggestion]) -> None:
        if not suggestions:
            logger.info("No new optimization suggestions generated")
            return
        by_category = Counter(s.category.value for s in suggestions)
        logger.info(
            "Generated %d suggestions (%s)",
            len(suggestions),
            ", ".join(f"{k}: {v}" for k, v in sorted(by_category.items())),
        )
        top = suggestions[0]
        logger.info(
            "Top suggestion: %s (%.1f%% confidence)", top.expected_impact, top.confidence * 100
        )

    # --- Accessors ---

    def all_suggestions(self) -> list[OptimizationSuggestion]:
        return list(self._suggestions)

    def by_priority(self, priority: Priority | str) -> list[OptimizationSuggestion]:
        p = Priority(priority)
        return [s for s in self._suggestions if s.priority is p]

    def by_category(self, category: Category | str) -> list[OptimizationSuggestion]:
        c = Category(category)
        return [s for s in self._suggestions if s.category is c]

    def count(self) -> int:
        return len(self._suggestions)
