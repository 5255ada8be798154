"""Tests for per-node health scoring."""

from datetime import datetime

import pytest

from cassconsole.assessment import assess_node
from cassconsole.models import (
    ClientRequestMetrics,
    CompactionMetrics,
    LatencyStats,
    MemoryMetrics,
    MetricGroup,
    MetricSample,
)


def sample_with(groups: dict) -> MetricSample:
    return MetricSample(host="10.0.0.1", captured_at=datetime.now(), groups=groups)


class TestAssessNode:
    """Test scoring deductions."""

    def test_healthy_node(self) -> None:
        sample = sample_with({
            MetricGroup.MEMORY: MemoryMetrics(heap_usage_percent=40.0),
            MetricGroup.CLIENT_REQUESTS: ClientRequestMetrics(read=LatencyStats(mean_ms=2.0)),
        })

        assessment = assess_node(sample)

        assert assessment.score == 100
        assert assessment.status == "healthy"
        assert assessment.issues == []

    def test_deductions_accumulate(self) -> None:
        sample = sample_with({
            MetricGroup.MEMORY: MemoryMetrics(heap_usage_percent=95.0),
            MetricGroup.CLIENT_REQUESTS: ClientRequestMetrics(read=LatencyStats(mean_ms=75.0)),
            MetricGroup.COMPACTION: CompactionMetrics(pending_tasks=40, status="behind"),
        })

        assessment = assess_node(sample)

        assert assessment.score == 40
        assert assessment.status == "critical"
        assert len(assessment.issues) == 3
        assert any("heap" in issue for issue in assessment.issues)

    def test_elevated_latency_is_warning(self) -> None:
        sample = sample_with({
            MetricGroup.CLIENT_REQUESTS: ClientRequestMetrics(
                read=LatencyStats(mean_ms=25.0), write=LatencyStats(mean_ms=30.0)
            ),
        })

        assessment = assess_node(sample)

        assert assessment.score == 80
        assert assessment.status == "warning"

    def test_no_groups_is_unknown(self) -> None:
        assessment = assess_node(MetricSample(host="x", captured_at=datetime.now()))

        assert assessment.score is None
        assert assessment.status == "unknown"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
