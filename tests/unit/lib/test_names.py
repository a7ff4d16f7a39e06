import random

import pytest

from fleet.lib import names


def test_generated_names_are_valid_and_deterministic_with_seed():
    first = [names.generate_name(random.Random(7)) for _ in range(3)]
    second = [names.generate_name(random.Random(7)) for _ in range(3)]
    assert first == second
    for name in first:
        assert names.is_valid_name(name)
        assert any(name.startswith(adj) for adj in names.ADJECTIVES)


@pytest.mark.parametrize("name", ["Builder", "worker_2", "a-b-c", "X", "_hidden"])
def test_valid_names(name):
    assert names.is_valid_name(name)


@pytest.mark.parametrize("name", ["", "-leading", "has space", "dot.name", "a/b", "x" * 51])
def test_invalid_names(name):
    assert not names.is_valid_name(name)
