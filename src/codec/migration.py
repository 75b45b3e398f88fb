from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from common.errors import MigrationError


logger = logging.getLogger(__name__)

Transform = Callable[[Any], Any]


@dataclass(frozen=True)
class MigrationStep:
    """Moves state from `from_version` to `from_version + 1` (and back, if `down` is set)."""

    from_version: int
    up: Transform
    down: Optional[Transform] = None

    @property
    def to_version(self) -> int:
        return self.from_version + 1


class MigrationManager:
    """
    Ordered schema transforms for decoded state.

    Notes
    - Steps are keyed by `from_version`; a path from v1 to v4 needs the steps
      for 1, 2 and 3. Any gap fails the whole migration before a single
      transform runs, so state is never left half-migrated.
    - Downward migration uses each step's `down` and fails the same way when
      one is missing.
    """

    def __init__(self, current_version: int = 0) -> None:
        if current_version < 0:
            raise ValueError("current_version must be >= 0")
        self.current_version = current_version
        self._steps: Dict[int, MigrationStep] = {}

    def add_migration(self, step: MigrationStep) -> None:
        if step.from_version < 0:
            raise ValueError("from_version must be >= 0")
        if step.from_version in self._steps:
            raise ValueError(f"migration from version {step.from_version} already registered")
        self._steps[step.from_version] = step

    def needs_migration(self, version: int, to_version: Optional[int] = None) -> bool:
        target = self.current_version if to_version is None else to_version
        return version != target

    def migration_path(self, from_version: int, to_version: Optional[int] = None) -> List[int]:
        """Versions visited after `from_version`, in application order."""
        target = self.current_version if to_version is None else to_version
        if from_version <= target:
            return list(range(from_version + 1, target + 1))
        return list(range(from_version - 1, target - 1, -1))

    def _plan(self, from_version: int, target: int) -> List[Transform]:
        transforms: List[Transform] = []
        if from_version < target:
            for v in range(from_version, target):
                step = self._steps.get(v)
                if step is None:
                    raise MigrationError(f"Missing migration from version {v} to {v + 1}")
                transforms.append(step.up)
        else:
            for v in range(from_version - 1, target - 1, -1):
                step = self._steps.get(v)
                if step is None or step.down is None:
                    raise MigrationError(f"Missing down migration from version {v + 1} to {v}")
                transforms.append(step.down)
        return transforms

    def migrate(self, value: Any, from_version: int, to_version: Optional[int] = None) -> Any:
        target = self.current_version if to_version is None else to_version
        if from_version == target:
            return value
        transforms = self._plan(from_version, target)
        logger.debug("migrating state from v%d to v%d (%d steps)", from_version, target, len(transforms))
        current = value
        for fn in transforms:
            try:
                current = fn(current)
            except Exception as ex:
                raise MigrationError(
                    f"Migration from v{from_version} to v{target} failed: {ex}"
                ) from ex
        return current


# -------- Common step helpers --------
def add_field(name: str, default: Any) -> Transform:
    def _apply(state: Dict[str, Any]) -> Dict[str, Any]:
        return {**state, name: state.get(name, default)}

    return _apply


def remove_field(name: str) -> Transform:
    def _apply(state: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in state.items() if k != name}

    return _apply


def rename_field(old: str, new: str) -> Transform:
    def _apply(state: Dict[str, Any]) -> Dict[str, Any]:
        if old not in state:
            return dict(state)
        out = {k: v for k, v in state.items() if k != old}
        out[new] = state[old]
        return out

    return _apply


def transform_field(name: str, fn: Callable[[Any], Any]) -> Transform:
    def _apply(state: Dict[str, Any]) -> Dict[str, Any]:
        if name not in state:
            return dict(state)
        return {**state, name: fn(state[name])}

    return _apply


__all__ = [
    "MigrationStep",
    "MigrationManager",
    "add_field",
    "remove_field",
    "rename_field",
    "transform_field",
]
