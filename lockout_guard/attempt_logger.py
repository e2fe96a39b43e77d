import json
import threading
from datetime import datetime, timezone
from pathlib import Path


class AttemptLogger:
    """Appends login attempts and lockout events to a JSON-lines file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.total_attempts = 0
        self._lock = threading.Lock()

    def _write(self, record: dict) -> None:
        record = {"timestamp": datetime.now(timezone.utc).isoformat(), **record}
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str) + "\n")

    def log_attempt(
        self,
        credential: str,
        result: str,
        latency_ms: float,
        extra: dict | None = None,
    ) -> int:
        with self._lock:
            self.total_attempts += 1
            attempt_id = self.total_attempts

        record = {
            "kind": "attempt",
            "credential": credential,
            "result": result,
            "latency_ms": round(latency_ms, 3),
            "attempt_id": attempt_id,
        }
        if extra:
            record.update(extra)
        self._write(record)
        return attempt_id

    def report(self, event: str, credential: str, **extra) -> None:
        self._write({"kind": "event", "event": event, "credential": credential, **extra})

    def report_fault(self, operation: str, credential: str, error: BaseException) -> None:
        self._write(
            {
                "kind": "fault",
                "operation": operation,
                "credential": credential,
                "error": f"{type(error).__name__}: {error}",
            }
        )
