"""
Reporting for publish and sync passes.

Collects per-key outcomes and renders them as a summary dict, console
lines or a pandas DataFrame.
"""

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional

import pandas as pd

from .artifacts import PublishFailure, PublishRecord, PublishResult, PublishState

logger = logging.getLogger(__name__)


class PublishReport:
    """Accumulates publish records and failures."""

    def __init__(self):
        self.records: List[PublishRecord] = []
        self.failures: List[PublishFailure] = []
        self._lock = threading.Lock()

    def add(self, result: PublishResult) -> None:
        with self._lock:
            if isinstance(result, PublishFailure):
                self.failures.append(result)
            else:
                self.records.append(result)

    def collect(self, results: Iterable[PublishResult]) -> Iterator[PublishResult]:
        """Record each result as it passes, yielding it unchanged."""
        for result in results:
            self.add(result)
            yield result

    @property
    def ok(self) -> bool:
        return not self.failures

    def counts(self) -> Dict[str, int]:
        """Number of records per state, plus failures."""
        counts = {state.value: 0 for state in PublishState}
        for record in self.records:
            counts[record.state.value] += 1
        counts["failed"] = len(self.failures)
        return counts

    def keys(self, state: PublishState) -> List[str]:
        return [r.key for r in self.records if r.state == state]

    def summary(self) -> Dict[str, Any]:
        """Get a summary of the pass."""
        return {
            "total": len(self.records) + len(self.failures),
            "counts": self.counts(),
            "simulated": sum(1 for r in self.records if r.simulated),
            "failures": [f.to_dict() for f in self.failures],
        }

    def format_lines(self, states: Optional[Iterable[PublishState]] = None) -> List[str]:
        """
        Render one line per key, optionally restricted to some states.

        Failures are always included.
        """
        wanted = set(states) if states is not None else set(PublishState)
        lines = []
        for record in self.records:
            if record.state not in wanted:
                continue
            marker = " (simulated)" if record.simulated else ""
            lines.append(f"[{record.state.value:<6}] {record.key}{marker}")
        for failure in self.failures:
            reason = str(failure.error).splitlines()[0]
            lines.append(f"[failed] {failure.key} ({failure.operation}: {reason})")
        return lines

    def to_dataframe(self) -> pd.DataFrame:
        """
        Convert records and failures to a DataFrame for analysis.

        Returns:
            DataFrame with one row per key, ``state`` as a categorical
        """
        rows = []
        for record in self.records:
            rows.append({
                "key": record.key,
                "state": record.state.value,
                "fingerprint": record.fingerprint,
                "etag": record.etag,
                "simulated": record.simulated,
                "error": None,
            })
        for failure in self.failures:
            rows.append({
                "key": failure.key,
                "state": "failed",
                "fingerprint": None,
                "etag": None,
                "simulated": False,
                "error": failure.message,
            })

        if not rows:
            return pd.DataFrame(
                columns=["key", "state", "fingerprint", "etag", "simulated", "error"]
            )

        df = pd.DataFrame(rows)
        df["state"] = pd.Categorical(
            df["state"], categories=[s.value for s in PublishState] + ["failed"]
        )
        return df

    def log_summary(self) -> None:
        counts = self.counts()
        parts = ", ".join(f"{name}={count}" for name, count in counts.items() if count)
        if self.failures:
            logger.error(f"Publish finished with failures: {parts}")
        else:
            logger.info(f"Publish finished: {parts or 'nothing to do'}")
