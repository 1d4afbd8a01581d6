from __future__ import annotations

import threading
from typing import Callable, Optional, Sequence


class StageProgress:
    """
    Thread-safe stage tracker for backends discovered in parallel.

    - Maintains a single overall tqdm bar (if a tqdm factory is given).
    - Each task (one per backend) advances through `stages`; the bar postfix
      shows the stage every task is currently in.
    """

    def __init__(
        self,
        *,
        tasks: Sequence[str],
        stages: Sequence[str],
        desc: str,
        tqdm_factory: Optional[Callable] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._stages = list(stages)
        self._stage_to_index = {name: i for i, name in enumerate(self._stages)}
        self._task_stage: dict[str, str] = {t: "pending" for t in tasks}
        self._task_index: dict[str, int] = {t: -1 for t in tasks}
        total = len(tasks) * max(1, len(self._stages))
        self._tqdm = tqdm_factory(total=total, desc=desc, unit="step", leave=False) if tqdm_factory else None

    def make_callback(self, task: str) -> Callable[[str], None]:
        def cb(stage: str) -> None:
            self.set_stage(task, stage)

        return cb

    def stage_of(self, task: str) -> Optional[str]:
        with self._lock:
            return self._task_stage.get(task)

    def set_stage(self, task: str, stage: str) -> None:
        with self._lock:
            prev_idx = self._task_index.get(task, -1)
            new_idx = self._stage_to_index.get(stage, prev_idx)
            if new_idx > prev_idx:
                self._task_index[task] = new_idx
                if self._tqdm is not None:
                    self._tqdm.update(new_idx - prev_idx)
            self._task_stage[task] = stage
            self._render_locked()

    def finish(self, task: str) -> None:
        with self._lock:
            prev_idx = self._task_index.get(task, -1)
            # A task that errored out still fills its share of the bar.
            remaining = len(self._stages) - 1 - prev_idx
            if remaining > 0 and self._tqdm is not None:
                self._tqdm.update(remaining)
            self._task_index[task] = len(self._stages) - 1
            self._task_stage[task] = "done"
            self._render_locked()

    def close(self) -> None:
        with self._lock:
            if self._tqdm is not None:
                self._tqdm.close()
                self._tqdm = None

    def _render_locked(self) -> None:
        if self._tqdm is None:
            return
        postfix = " ".join(f"{task}:{stage}" for task, stage in sorted(self._task_stage.items()))
        self._tqdm.set_postfix_str(postfix, refresh=True)
