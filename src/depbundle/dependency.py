# In src/depbundle/dependency.py
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Dependency:
    """A single declared requirement of a bundle."""

    name: str
    version: Optional[str] = None

    def __str__(self) -> str:
        if self.version:
            return f"{self.name} ({self.version})"
        return self.name
