"""
Viewport Proximity

Tracks the vertical position of resources in a scrolling layout and triggers
a load when a resource comes within ``margin`` pixels of the viewport.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from snipecache.resources.models import Resource

logger = logging.getLogger(__name__)


@dataclass
class _Target:
    resource: Resource
    top: float
    height: float
    inside: bool = False


class ProximityObserver:
    """
    Fires ``on_enter`` for resources entering the extended viewport.

    A resource triggers once per entry: it must leave the extended viewport
    before it can trigger again. Resources for which ``is_settled`` returns
    True (already loaded or loading) never trigger.
    """

    def __init__(
        self,
        on_enter: Callable[[Resource], None],
        margin: float = 1000,
        is_settled: Optional[Callable[[str], bool]] = None
    ):
        self._on_enter = on_enter
        self._margin = margin
        self._is_settled = is_settled or (lambda resource_id: False)
        self._targets: Dict[str, _Target] = {}

    @property
    def margin(self) -> float:
        return self._margin

    def observe(self, resource: Resource, top: float, height: float = 0) -> None:
        """Start observing a resource laid out at ``top`` with ``height``."""
        previous = self._targets.get(resource.id)
        inside = previous.inside if previous is not None else False
        self._targets[resource.id] = _Target(resource, top, height, inside)

    def unobserve(self, resource_id: str) -> bool:
        return self._targets.pop(resource_id, None) is not None

    def disconnect(self) -> None:
        self._targets.clear()

    def observed(self) -> List[str]:
        return list(self._targets)

    def update_viewport(self, top: float, height: float) -> List[Resource]:
        """
        Report a new viewport position.

        Args:
            top: Scroll offset of the viewport
            height: Viewport height

        Returns:
            The resources triggered by this update
        """
        lower = top - self._margin
        upper = top + height + self._margin

        triggered = []
        for target in list(self._targets.values()):
            inside = target.top + target.height >= lower and target.top <= upper
            entering = inside and not target.inside
            target.inside = inside

            if not entering or self._is_settled(target.resource.id):
                continue

            triggered.append(target.resource)
            try:
                self._on_enter(target.resource)
            except Exception as e:
                logger.error(f"Error triggering load for {target.resource.id!r}: {e}")

        return triggered
