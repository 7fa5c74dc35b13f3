"""
Staged dependent fetch.

A FetchPipeline is an ordered list of FetchStages. Each stage names the
stages it depends on; ``run`` executes them in declaration order, which
must already be a valid dependency order (checked at construction).

When a stage fails, the pipeline calls ``on_failure(failed, downstream,
exc)`` so the owner can clear the failed stage and every stage that
(transitively) depends on it, then re-raises the original exception.
Stages that already completed are left untouched.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class FetchStage:
    """One load step. ``load`` takes no arguments and returns nothing."""
    name: str
    load: Callable[[], None]
    depends_on: tuple[str, ...] = field(default_factory=tuple)


class FetchPipeline:
    def __init__(self, stages, on_failure=None):
        self.stages = list(stages)
        self.on_failure = on_failure
        seen = set()
        for stage in self.stages:
            unknown = [d for d in stage.depends_on if d not in seen]
            if unknown:
                raise ValueError(
                    f"Stage {stage.name!r} depends on {unknown} which do not run before it"
                )
            if stage.name in seen:
                raise ValueError(f"Duplicate stage name {stage.name!r}")
            seen.add(stage.name)

    @property
    def names(self):
        return [s.name for s in self.stages]

    def downstream_of(self, name):
        """Names of every stage depending on ``name`` directly or transitively."""
        affected = {name}
        result = []
        for stage in self.stages:
            if any(d in affected for d in stage.depends_on):
                affected.add(stage.name)
                result.append(stage.name)
        return result

    def run(self, start_at=None):
        """Run stages in order, optionally starting at ``start_at``.

        Returns the names of stages that completed.
        """
        names = self.names
        if start_at is not None and start_at not in names:
            raise ValueError(f"Unknown stage {start_at!r}")
        begin = names.index(start_at) if start_at else 0

        completed = []
        for stage in self.stages[begin:]:
            logger.debug("Fetch stage %s starting", stage.name)
            try:
                stage.load()
            except Exception as exc:
                downstream = self.downstream_of(stage.name)
                logger.error("Fetch stage %s failed; resetting %s", stage.name, downstream or "nothing")
                if self.on_failure is not None:
                    self.on_failure(stage.name, downstream, exc)
                raise
            completed.append(stage.name)
        return completed
