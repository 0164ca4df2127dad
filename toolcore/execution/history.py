"""
toolcore.execution.history - Execution History

Bounded in-memory ledger of finalized ExecutionRecords with per-session
filtering and aggregate statistics. Oldest entries are evicted once the
capacity is reached.
"""

from collections import deque

from .models import ExecutionRecord, ExecutionStats, ExecutionStatus


class ExecutionHistory:
    """
    Ordered ledger of finalized executions.

    Entries are stored in finalization order; reads sort by start_time
    descending because overlapping executions can finish out of start order.
    """

    def __init__(self, capacity: int = 1000) -> None:
        self.capacity = capacity
        self._entries: deque[ExecutionRecord] = deque(maxlen=capacity)

    def append(self, record: ExecutionRecord) -> None:
        self._entries.append(record)

    def query(self, session_id: str | None = None, limit: int | None = None) -> list[ExecutionRecord]:
        entries = [e for e in self._entries if session_id is None or e.session_id == session_id]
        entries.sort(key=lambda e: e.start_time, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries

    def latest_for(self, tool_call_id: str) -> ExecutionRecord | None:
        matches = [e for e in self._entries if e.tool_call_id == tool_call_id]
        if not matches:
            return None
        return max(matches, key=lambda e: e.start_time)

    def clear(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._entries.clear()
            return
        kept = [e for e in self._entries if e.session_id != session_id]
        self._entries = deque(kept, maxlen=self.capacity)

    def stats(self, session_id: str | None = None) -> ExecutionStats:
        """Counts per status, per-tool breakdown and mean execution time.

        The mean only covers entries with a recorded execution time that
        were not cancelled.
        """
        entries = [e for e in self._entries if session_id is None or e.session_id == session_id]
        stats = ExecutionStats(total=len(entries))

        total_time = 0
        timed = 0
        for entry in entries:
            if entry.status is ExecutionStatus.SUCCESS:
                stats.successful += 1
            elif entry.status is ExecutionStatus.ERROR:
                stats.failed += 1
            elif entry.status is ExecutionStatus.TIMEOUT:
                stats.timeout += 1
            elif entry.status is ExecutionStatus.CANCELLED:
                stats.cancelled += 1

            stats.tool_breakdown[entry.tool_name] = stats.tool_breakdown.get(entry.tool_name, 0) + 1

            if entry.execution_time_ms is not None and entry.status is not ExecutionStatus.CANCELLED:
                total_time += entry.execution_time_ms
                timed += 1

        if timed:
            stats.average_execution_time_ms = round(total_time / timed)
        return stats

    def __len__(self) -> int:
        return len(self._entries)
