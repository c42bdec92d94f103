from dataclasses import dataclass
from typing import Optional


@dataclass
class User:
    """Second-generation user record."""
    id: str
    display_name: str
    email: Optional[str] = None
