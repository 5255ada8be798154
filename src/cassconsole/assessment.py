"""Heuristic per-node health scoring."""

from __future__ import annotations

from .models import MetricSample, NodeAssessment


def _status_for(score: int) -> str:
    match score:
        case s if s >= 90:
            return "healthy"
        case s if s >= 70:
            return "warning"
        case s if s >= 50:
            return "degraded"
        case _:
            return "critical"


def assess_node(sample: MetricSample) -> NodeAssessment:
    """Score a sample from 0 to 100 by deducting for known trouble signs."""
    if sample.all_failed:
        return NodeAssessment(score=None, status="unknown")

    score = 100
    issues: list[str] = []

    if (requests := sample.client_requests) is not None:
        match requests.error_rate_percent:
            case rate if rate is not None and rate > 5:
                score -= 30
                issues.append(f"High error rate: {rate:.2f}%")
            case rate if rate is not None and rate > 1:
                score -= 10
                issues.append(f"Elevated error rate: {rate:.2f}%")

        for label, stats in (("read", requests.read), ("write", requests.write)):
            match stats.mean_ms:
                case mean if mean is not None and mean > 50:
                    score -= 20
                    issues.append(f"High {label} latency: {mean:.2f}ms")
                case mean if mean is not None and mean > 20:
                    score -= 10
                    issues.append(f"Elevated {label} latency: {mean:.2f}ms")

    if (memory := sample.memory) is not None:
        match memory.heap_usage_percent:
            case usage if usage is not None and usage > 90:
                score -= 25
                issues.append(f"Critical heap usage: {usage:.1f}%")
            case usage if usage is not None and usage > 80:
                score -= 10
                issues.append(f"High heap usage: {usage:.1f}%")

    if (pools := sample.thread_pools) is not None:
        for name, pool in pools.pools.items():
            match pool.status:
                case "overloaded":
                    score -= 20
                    issues.append(f"{name} thread pool overloaded: {pool.pending} pending")
                case "busy":
                    score -= 5
                    issues.append(f"{name} thread pool busy: {pool.pending} pending")

    if (cache := sample.cache) is not None:
        key_cache = cache.key_cache
        if key_cache.efficiency == "poor" and (key_cache.requests or 0) > 1000:
            score -= 15
            issues.append(f"Poor key cache hit rate: {key_cache.hit_rate:.1%}")

    if (compaction := sample.compaction) is not None and compaction.status == "behind":
        score -= 15
        issues.append(f"Compaction behind: {compaction.pending_tasks} pending")

    if (storage := sample.storage) is not None and storage.hints_status == "high":
        score -= 10
        issues.append(f"High hint count: {storage.total_hints}")

    score = max(0, score)
    return NodeAssessment(score=score, status=_status_for(score), issues=issues)
