"""Per-item results for best-effort batch operations.

Bulk deletes, suggestion imports and "save monitoring progress" process
items one at a time; a failing item never undoes earlier successes. The
caller receives every outcome and decides whether partial failure is an
error (``raise_for_failures``).
"""
from dataclasses import dataclass, field
from typing import Any

from riskwise.core.exceptions import PartialBatchFailure


@dataclass
class ItemResult:
    """Outcome of one item in a batch."""
    key: str
    ok: bool
    value: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        body = {"key": self.key, "ok": self.ok}
        if self.ok and isinstance(self.value, dict):
            body["value"] = self.value
        if self.error:
            body["error"] = self.error
        return body


@dataclass
class BulkResult:
    """Aggregate of ItemResults for one named batch action."""
    action: str
    items: list[ItemResult] = field(default_factory=list)

    def succeeded(self, key, value=None):
        self.items.append(ItemResult(key=str(key), ok=True, value=value))

    def failed(self, key, error):
        self.items.append(ItemResult(key=str(key), ok=False, error=str(error)))

    @property
    def successes(self) -> list[ItemResult]:
        return [r for r in self.items if r.ok]

    @property
    def failures(self) -> list[ItemResult]:
        return [r for r in self.items if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    def raise_for_failures(self):
        """Raise PartialBatchFailure when any item failed; return self otherwise."""
        if self.failures:
            raise PartialBatchFailure(self.action, list(self.items))
        return self

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "ok": self.ok,
            "succeeded": len(self.successes),
            "failed": len(self.failures),
            "items": [r.to_dict() for r in self.items],
        }
