"""Project lifecycle events flowing from the watcher hook to the worker pool."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .watcher import ProjectHandle


class EventKind(str, Enum):
    """Project lifecycle transitions handled by the controller."""

    CREATE = "create"
    DELETE = "delete"


# Per-event scratch values shared along the plugin chain
PluginData = dict[str, str]


@dataclass(frozen=True)
class Event:
    """One observed lifecycle transition of a tenant project.

    The project handle is opaque to the dispatcher and plugins; it is only
    used to update the project's watcher record.
    """

    kind: EventKind
    organization: str
    name: str
    uuid: str
    project: ProjectHandle | None = field(default=None, compare=False, repr=False)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.organization}/{self.name} ({self.uuid})"
