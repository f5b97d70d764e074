from __future__ import annotations

import pytest

from teachable.registry import ClassRegistry


def test_add_class_uses_positional_default_names() -> None:
    registry = ClassRegistry()

    first = registry.add_class()
    second = registry.add_class()

    assert first != second
    assert [label.name for label in registry.classes] == ["Class 1", "Class 2"]
    assert registry.counts() == [0, 0]
    assert registry[1].id == second


def test_name_template_is_configurable() -> None:
    registry = ClassRegistry(name_template="Klasse {n}")
    registry.add_class()

    assert registry[0].name == "Klasse 1"


def test_rename_allows_blank_until_committed() -> None:
    registry = ClassRegistry()
    registry.add_class()
    registry.add_class()

    registry.rename_class(1, "")
    assert registry[1].name == ""
    assert registry.display_name(1) == "Class 2"

    assert registry.commit_name(1) == "Class 2"

    registry.rename_class(0, "  Thumbs up  ")
    assert registry.commit_name(0) == "Thumbs up"


def test_clear_default_name_only_touches_generated_names() -> None:
    registry = ClassRegistry(name_template="Klasse {n}")
    registry.add_class()
    registry.add_class()
    registry.rename_class(1, "Cat")
    registry.rename_class(0, "Class 1")

    registry.clear_default_name(0)
    registry.clear_default_name(1)

    assert registry[0].name == ""
    assert registry[1].name == "Cat"


def test_remove_class_refuses_last_and_unknown() -> None:
    registry = ClassRegistry()
    removed: list[int] = []
    registry.on_class_removed(removed.append)
    registry.add_class()

    assert registry.remove_class(0) is False
    registry.add_class()
    assert registry.remove_class(5) is False
    assert registry.remove_class(-1) is False
    assert removed == []


def test_remove_class_keeps_relative_order_and_notifies() -> None:
    registry = ClassRegistry()
    removed: list[int] = []
    registry.on_class_removed(removed.append)
    ids = [registry.add_class() for _ in range(3)]

    assert registry.remove_class(1) is True

    assert [label.id for label in registry.classes] == [ids[0], ids[2]]
    assert removed == [1]


def test_counts_and_empty_names() -> None:
    registry = ClassRegistry()
    registry.add_class()
    registry.add_class()
    registry.rename_class(1, "   ")

    registry.increment(0)
    registry.increment(0)

    assert registry.counts() == [2, 0]
    assert registry.empty_class_names() == ["Class 2"]

    registry.set_count(0, 0)
    assert registry.counts() == [0, 0]
    with pytest.raises(ValueError):
        registry.set_count(0, -1)


def test_invalid_index_raises_index_error() -> None:
    registry = ClassRegistry()
    registry.add_class()

    with pytest.raises(IndexError):
        registry.rename_class(3, "nope")
    with pytest.raises(IndexError):
        registry.increment(-1)
