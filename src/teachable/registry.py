"""Ordered registry of user-defined classes."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import replace

from .config import DEFAULT_CLASS_NAME
from .types import ClassLabel

LOGGER = logging.getLogger(__name__)

RemovalListener = Callable[[int], None]


class ClassRegistry:
    """Keeps class labels in display order together with their example counts.

    Positions matter: feature vectors are labelled by class index, so removing
    a class notifies listeners which re-index everything keyed by position.
    """

    def __init__(self, *, name_template: str = DEFAULT_CLASS_NAME) -> None:
        self._name_template = name_template
        self._classes: list[ClassLabel] = []
        self._removal_listeners: list[RemovalListener] = []

    def __len__(self) -> int:
        return len(self._classes)

    def __getitem__(self, index: int) -> ClassLabel:
        return self._classes[self.check_index(index)]

    @property
    def classes(self) -> tuple[ClassLabel, ...]:
        return tuple(self._classes)

    def on_class_removed(self, callback: RemovalListener) -> None:
        """Register a callback invoked with the index of a removed class."""

        self._removal_listeners.append(callback)

    def default_name(self, index: int) -> str:
        return self._name_template.format(n=index + 1)

    def add_class(self) -> str:
        """Append a class with its positional default name and return its id."""

        index = len(self._classes)
        label = ClassLabel(id=f"class-{uuid.uuid4().hex}", name=self.default_name(index))
        self._classes.append(label)
        LOGGER.debug("Added class %s at position %s", label.name, index)
        return label.id

    def rename_class(self, index: int, name: str) -> None:
        """Set the display name as typed; blank names are allowed while editing."""

        position = self.check_index(index)
        self._classes[position] = replace(self._classes[position], name=name)

    def commit_name(self, index: int) -> str:
        """Finish an edit: trim the name, falling back to the positional default."""

        position = self.check_index(index)
        trimmed = self._classes[position].name.strip()
        committed = trimmed or self.default_name(position)
        self._classes[position] = replace(self._classes[position], name=committed)
        return committed

    def clear_default_name(self, index: int) -> None:
        """Blank the name when it is still a generated default, ready for typing."""

        position = self.check_index(index)
        current = self._classes[position].name
        if current in (self.default_name(position), DEFAULT_CLASS_NAME.format(n=position + 1)):
            self._classes[position] = replace(self._classes[position], name="")

    def display_name(self, index: int) -> str:
        position = self.check_index(index)
        return self._classes[position].name.strip() or self.default_name(position)

    def remove_class(self, index: int) -> bool:
        """Remove a class, refusing to drop the last one or an unknown index."""

        if len(self._classes) <= 1:
            LOGGER.debug("Refusing to remove the only remaining class")
            return False
        if index < 0 or index >= len(self._classes):
            LOGGER.debug("Refusing to remove unknown class index %s", index)
            return False
        removed = self._classes.pop(index)
        LOGGER.info("Removed class '%s' (position %s)", removed.name, index)
        for callback in list(self._removal_listeners):
            callback(index)
        return True

    def increment(self, index: int, amount: int = 1) -> int:
        position = self.check_index(index)
        label = self._classes[position]
        updated = max(0, label.example_count + amount)
        self._classes[position] = replace(label, example_count=updated)
        return updated

    def set_count(self, index: int, count: int) -> None:
        position = self.check_index(index)
        if count < 0:
            raise ValueError("example count cannot be negative")
        self._classes[position] = replace(self._classes[position], example_count=count)

    def counts(self) -> list[int]:
        return [label.example_count for label in self._classes]

    def empty_class_names(self) -> list[str]:
        return [
            self.display_name(index)
            for index, label in enumerate(self._classes)
            if label.example_count == 0
        ]

    def check_index(self, index: int) -> int:
        """Return ``index`` unchanged, raising IndexError when it is out of range."""

        if index < 0 or index >= len(self._classes):
            raise IndexError(f"Class index {index} out of range ({len(self._classes)} classes).")
        return index


__all__ = ["ClassRegistry"]
