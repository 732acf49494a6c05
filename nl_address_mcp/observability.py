import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional

# Matches the ``kind`` of the address service errors.
FAILURE_KINDS = ("upstream", "decode", "transport")


@dataclass
class LookupStats:
    lookups: int = 0
    total_latency_ms: float = 0.0
    failures: Counter = field(default_factory=Counter)

    def observe(self, duration_ms: float, failure: Optional[str]) -> None:
        self.lookups += 1
        self.total_latency_ms += float(duration_ms)
        if failure is not None:
            self.failures[failure] += 1


class InMemoryMetrics:
    """Per-tool lookup counters, split by failure kind."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tools: Dict[str, LookupStats] = {}

    def record(self, tool: str, duration_ms: float, failure: Optional[str] = None) -> None:
        with self._lock:
            self._tools.setdefault(tool, LookupStats()).observe(duration_ms, failure)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            data: Dict[str, Dict[str, float]] = {}
            for name, stats in self._tools.items():
                entry = {
                    "calls": float(stats.lookups),
                    "errors": float(sum(stats.failures.values())),
                    "avg_latency_ms": stats.total_latency_ms / stats.lookups,
                }
                for kind in FAILURE_KINDS:
                    entry[f"{kind}_errors"] = float(stats.failures[kind])
                data[name] = entry
            return data


def format_metrics(metrics: InMemoryMetrics) -> str:
    """Prometheus text exposition of the per-tool counters."""
    lines = [
        "# HELP mcp_server_healthy MCP server health status",
        "# TYPE mcp_server_healthy gauge",
        "mcp_server_healthy 1",
    ]
    snapshot = sorted(metrics.snapshot().items())
    if not snapshot:
        return "\n".join(lines) + "\n"

    lines.append("# HELP mcp_tool_calls_total Total number of tool calls")
    lines.append("# TYPE mcp_tool_calls_total counter")
    for tool_name, m in snapshot:
        lines.append(f'mcp_tool_calls_total{{tool="{tool_name}"}} {m["calls"]}')

    lines.append("# HELP mcp_tool_errors_total Failed tool calls by failure kind")
    lines.append("# TYPE mcp_tool_errors_total counter")
    for tool_name, m in snapshot:
        for kind in FAILURE_KINDS:
            lines.append(f'mcp_tool_errors_total{{tool="{tool_name}",kind="{kind}"}} {m[f"{kind}_errors"]}')

    lines.append("# HELP mcp_tool_avg_latency_ms Average tool latency in milliseconds")
    lines.append("# TYPE mcp_tool_avg_latency_ms gauge")
    for tool_name, m in snapshot:
        lines.append(f'mcp_tool_avg_latency_ms{{tool="{tool_name}"}} {m["avg_latency_ms"]}')
    return "\n".join(lines) + "\n"
