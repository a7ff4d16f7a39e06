import random
import re

ADJECTIVES = [
    "Swift", "Bright", "Calm", "Dark", "Epic", "Fast", "Gold", "Happy",
    "Iron", "Jade", "Keen", "Loud", "Mint", "Nice", "Oak", "Pure",
    "Quick", "Red", "Sage", "True", "Ultra", "Vivid", "Wild", "Young", "Zen",
]  # fmt: skip

NOUNS = [
    "Arrow", "Bear", "Castle", "Dragon", "Eagle", "Falcon", "Grove", "Hawk",
    "Ice", "Jaguar", "Knight", "Lion", "Moon", "Nova", "Owl", "Phoenix",
    "Quartz", "Raven", "Storm", "Tiger", "Union", "Viper", "Wolf", "Xenon", "Yak", "Zenith",
]  # fmt: skip

_VALID_NAME = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9_-]*$")
MAX_NAME_LENGTH = 50


def generate_name(rng: random.Random | None = None) -> str:
    """Memorable adjective+noun name, e.g. SwiftFalcon."""
    choice = (rng or random).choice
    return choice(ADJECTIVES) + choice(NOUNS)


def is_valid_name(name: str) -> bool:
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    return bool(_VALID_NAME.match(name))
