from dataclasses import dataclass


@dataclass(frozen=True)
class Outcome:
    """Result of a best-effort action that never raises."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(True)

    @classmethod
    def failure(cls, error: str) -> "Outcome":
        return cls(False, error)
