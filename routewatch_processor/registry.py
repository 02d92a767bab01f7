"""
Route Registry - Thread-safe route and assignment management.

This module provides the RouteRegistry class which manages registered routes,
their buffer polygons, and which person walks which routes. It supports
hot-reconfiguration via MQTT commands.

Thread Safety:
- Uses threading.Lock for protecting route/assignment dict mutations
- Snapshot pattern for snapshot_for() to minimize lock holding time
- RoutePath and BufferPolygon objects are immutable (frozen dataclass)
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Set, Tuple

from routewatch_zone import BufferPolygon, BufferStatus, RoutePath
from routewatch_processor.store import InMemoryBufferStore


@dataclass
class ManagedRoute:
    """
    Encapsulates a registered route for registry management.

    The buffer polygon itself lives in the store (keyed by route_id).
    """

    route_id: str
    path: RoutePath
    radius_m: float


class RouteRegistry:
    """
    Thread-safe registry for routes, assignments and registration flags.

    Thread Safety Guarantees:
    - add_route(), remove_route(), assign(), unassign(): Write operations (acquire lock)
    - set_registering(): Write operation (acquire lock)
    - snapshot_for(): Read operation with snapshot (acquire lock briefly)
    - list_routes(), get_route_info(): Read operations (acquire lock briefly)

    Usage:
        registry = RouteRegistry(store)
        registry.add_route("park_loop", path, radius_m=9)
        registry.assign("grandma", "park_loop")

        polygons, paths = registry.snapshot_for("grandma")
    """

    def __init__(self, store: InMemoryBufferStore):
        """Initialize empty registry over a polygon store."""
        self.store = store
        self._routes: Dict[str, ManagedRoute] = {}
        self._assignments: Dict[str, Set[str]] = {}
        self._registering: Set[str] = set()
        self._lock = threading.Lock()

    def add_route(self, route_id: str, path: RoutePath, radius_m: float) -> None:
        """
        Add a route to the registry.

        Raises:
            ValueError: If route_id already exists
        """
        with self._lock:
            if route_id in self._routes:
                raise ValueError(f"Route '{route_id}' already exists")
            self._routes[route_id] = ManagedRoute(route_id, path, radius_m)

    def update_route(self, route_id: str, path: RoutePath, radius_m: float) -> None:
        """
        Replace an existing route's path (its polygon must be rebuilt).

        Raises:
            KeyError: If route_id does not exist
        """
        with self._lock:
            if route_id not in self._routes:
                raise KeyError(f"Route '{route_id}' not found")
            self._routes[route_id] = ManagedRoute(route_id, path, radius_m)

    def remove_route(self, route_id: str) -> List[str]:
        """
        Remove a route, its polygon and every assignment to it.

        Returns:
            Person ids that had the route assigned

        Raises:
            KeyError: If route_id does not exist
        """
        with self._lock:
            if route_id not in self._routes:
                raise KeyError(f"Route '{route_id}' not found")
            del self._routes[route_id]

            affected = []
            for person_id, route_ids in self._assignments.items():
                if route_id in route_ids:
                    route_ids.discard(route_id)
                    affected.append(person_id)

        self.store.delete(route_id)
        return sorted(affected)

    def has_route(self, route_id: str) -> bool:
        with self._lock:
            return route_id in self._routes

    def assign(self, person_id: str, route_id: str) -> None:
        """
        Assign a route to a person.

        Raises:
            KeyError: If route_id does not exist
        """
        with self._lock:
            if route_id not in self._routes:
                raise KeyError(f"Route '{route_id}' not found")
            self._assignments.setdefault(person_id, set()).add(route_id)

    def unassign(self, person_id: str, route_id: str) -> bool:
        """Returns False if the route was not assigned to the person."""
        with self._lock:
            route_ids = self._assignments.get(person_id)
            if not route_ids or route_id not in route_ids:
                return False
            route_ids.discard(route_id)
            return True

    def persons_for_route(self, route_id: str) -> List[str]:
        with self._lock:
            return sorted(
                person_id
                for person_id, route_ids in self._assignments.items()
                if route_id in route_ids
            )

    def routes_for(self, person_id: str) -> List[str]:
        with self._lock:
            return sorted(self._assignments.get(person_id, ()))

    def set_registering(self, person_id: str, registering: bool) -> None:
        """While a person records a new route, their detection is suspended."""
        with self._lock:
            if registering:
                self._registering.add(person_id)
            else:
                self._registering.discard(person_id)

    def is_registering(self, person_id: str) -> bool:
        with self._lock:
            return person_id in self._registering

    def snapshot_for(
        self, person_id: str
    ) -> Tuple[List[BufferPolygon], List[RoutePath]]:
        """
        Geometry used for one person's containment and guidance.

        Returns empty lists while the person is registering a route
        (detection fails open).

        Thread-safe: Minimizes lock contention by using snapshot pattern.
        """
        with self._lock:
            if person_id in self._registering:
                return [], []
            routes = [
                self._routes[route_id]
                for route_id in sorted(self._assignments.get(person_id, ()))
                if route_id in self._routes
            ]

        polygons = []
        paths = []
        for route in routes:
            polygon = self.store.get(route.route_id)
            if polygon is not None:
                polygons.append(polygon)
            paths.append(route.path)
        return polygons, paths

    def list_routes(self) -> List[str]:
        """Registered route ids, sorted."""
        with self._lock:
            return sorted(self._routes)

    def get_route_info(self, route_id: str) -> Dict[str, Any]:
        """
        Get information about a specific route.

        Raises:
            KeyError: If route_id does not exist
        """
        with self._lock:
            if route_id not in self._routes:
                raise KeyError(f"Route '{route_id}' not found")
            managed = self._routes[route_id]
            persons = sorted(
                person_id
                for person_id, route_ids in self._assignments.items()
                if route_id in route_ids
            )

        polygon = self.store.get(route_id)
        return {
            "points": len(managed.path),
            "radius_m": managed.radius_m,
            "buffer_status": polygon.status.value if polygon else BufferStatus.PENDING.value,
            "buffer_vertices": len(polygon) if polygon else 0,
            "error_reason": polygon.error_reason if polygon else None,
            "assigned_to": persons,
        }
