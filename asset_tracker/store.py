"""Observable config/state holder shared by the tracker services."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Generic, Mapping, TypeVar

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT")
StateT = TypeVar("StateT")

Listener = Callable[[Any], None]


class ObservableStore(Generic[ConfigT, StateT]):
    """In-memory store of a frozen config and a frozen state dataclass.

    Subclasses set ``default_config``/``default_state`` before calling
    ``initialize()``. Every ``update`` replaces the state object and notifies
    subscribers with the new state; ``configure`` does the same for config and
    hands the changed keys to ``_on_configure``.
    """

    name = "ObservableStore"

    def __init__(self, default_config: ConfigT, default_state: StateT) -> None:
        self.default_config = default_config
        self.default_state = default_state
        self._config = default_config
        self._state = default_state
        self._listeners: list[Listener] = []

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def state(self) -> StateT:
        return self._state

    def initialize(self) -> None:
        """Reset config and state to their defaults and notify subscribers."""
        self._config = self.default_config
        self._state = self.default_state
        self.configure({}, overwrite=True, full_update=False)
        self.update({}, overwrite=True)

    def configure(
        self,
        patch: Mapping[str, Any],
        overwrite: bool = False,
        full_update: bool = True,
    ) -> None:
        """Merge ``patch`` into config.

        Args:
            patch: Field values to change.
            overwrite: Start from ``default_config`` instead of the current
                config.
            full_update: Run the ``_on_configure`` hook for the changed keys.
        """
        base = self.default_config if overwrite else self._config
        self._check_fields(base, patch)
        previous = self._config
        self._config = dataclasses.replace(base, **patch)
        if full_update:
            changed = {
                key: value
                for key, value in patch.items()
                if getattr(previous, key) != value
            }
            if changed:
                self._on_configure(changed)

    def update(self, patch: Mapping[str, Any], overwrite: bool = False) -> None:
        """Merge ``patch`` into state and notify subscribers."""
        base = self.default_state if overwrite else self._state
        self._check_fields(base, patch)
        self._state = dataclasses.replace(base, **patch)
        self._notify()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _on_configure(self, changed: Mapping[str, Any]) -> None:
        """Hook for subclasses reacting to config changes."""

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error("%s listener failed: %s", self.name, e)

    @staticmethod
    def _check_fields(target: Any, patch: Mapping[str, Any]) -> None:
        known = {f.name for f in dataclasses.fields(target)}
        unknown = set(patch) - known
        if unknown:
            raise KeyError(
                f"Unknown field(s) for {type(target).__name__}: {sorted(unknown)}"
            )
