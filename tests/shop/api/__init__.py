"""Shared shop API types."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Status(str, Enum):
    """Lifecycle state of a widget."""
    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass
class Widget:
    """A thing for sale."""
    id: int
    name: str = field(metadata={"validate": "required,min=3", "doc": "Display name."})
    status: Status = Status.ACTIVE
    tags: list[str] = field(default_factory=list, metadata={"omitempty": True})
    price_cents: Optional[int] = None
    secret: str = field(default="", metadata={"wire": "-"})


@dataclass
class GetWidgetRequest:
    id: int


@dataclass
class TreeNode:
    label: str
    children: list["TreeNode"] = field(default_factory=list)


@dataclass
class Counter:
    count: int = 0
