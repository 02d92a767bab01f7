"""
Buffer Polygon Store - Thread-safe in-memory artifact storage.

One polygon per route id. Polygons are immutable, so put() replaces the
whole artifact and readers never observe a partial write.
"""

import threading
from typing import Dict, List, Optional

from routewatch_zone import BufferPolygon


class InMemoryBufferStore:
    """
    Thread-safe BufferPolygonStore backed by a dict.

    Usage:
        store = InMemoryBufferStore()
        builder = BufferPolygonBuilder(store=store)
        builder.build("park_loop", path)
        polygon = store.get("park_loop")
    """

    def __init__(self):
        self._polygons: Dict[str, BufferPolygon] = {}
        self._lock = threading.Lock()

    def get(self, route_id: str) -> Optional[BufferPolygon]:
        with self._lock:
            return self._polygons.get(route_id)

    def put(self, polygon: BufferPolygon) -> None:
        with self._lock:
            self._polygons[polygon.route_id] = polygon

    def delete(self, route_id: str) -> bool:
        """Remove a polygon. Returns False if there was none."""
        with self._lock:
            return self._polygons.pop(route_id, None) is not None

    def list_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._polygons)

    def __len__(self) -> int:
        with self._lock:
            return len(self._polygons)
