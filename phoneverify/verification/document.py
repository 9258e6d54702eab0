"""In-memory page document hosting challenge widget containers."""

from __future__ import annotations

from dataclasses import dataclass, field


def _new_node_list() -> list[str]:
    return []


@dataclass(slots=True)
class PageContainer:
    """One addressable element that a challenge widget renders into."""

    element_id: str
    visible: bool = False
    offscreen: bool = False
    inner_html: str = ""
    child_ids: list[str] = field(default_factory=_new_node_list)

    def append_child(self, node_id: str, markup: str = "") -> None:
        """Attach a rendered node and its markup."""
        self.child_ids.append(node_id)
        self.inner_html += markup

    def remove_children(self, prefix: str) -> int:
        """Remove child nodes whose id starts with prefix and return the count."""
        kept = [node_id for node_id in self.child_ids if not node_id.startswith(prefix)]
        removed = len(self.child_ids) - len(kept)
        self.child_ids = kept
        return removed

    def empty(self) -> None:
        """Drop all children and inner markup."""
        self.child_ids = []
        self.inner_html = ""

    @property
    def is_empty(self) -> bool:
        """Return True when nothing is rendered in the container."""
        return not self.child_ids and not self.inner_html


class PageDocument:
    """Registry of page containers keyed by element id."""

    _containers: dict[str, PageContainer]

    def __init__(self) -> None:
        """Initialize an empty document."""
        self._containers = {}

    def get_element(self, element_id: str) -> PageContainer | None:
        """Return the container for element_id, if it exists."""
        return self._containers.get(element_id)

    def create_offscreen_container(self, element_id: str) -> PageContainer:
        """Append a hidden container at the end of the document body."""
        container = PageContainer(element_id=element_id, offscreen=True)
        self._containers[element_id] = container
        return container

    def add_container(
        self,
        element_id: str,
        *,
        visible: bool = True,
    ) -> PageContainer:
        """Register a container that the page layout already provides."""
        container = PageContainer(element_id=element_id, visible=visible)
        self._containers[element_id] = container
        return container

    def remove_element(self, element_id: str) -> bool:
        """Remove a container from the document and return True if present."""
        return self._containers.pop(element_id, None) is not None

    def element_ids(self) -> tuple[str, ...]:
        """Return the ids of all registered containers."""
        return tuple(self._containers)
