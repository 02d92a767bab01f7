"""
Test Geometry Layer
===================

Buffer construction and containment, no broker or clock involved.

Usage:
    pytest test_geometry.py -v
"""

import math

import pytest
from shapely.geometry import MultiPolygon, Polygon

from routewatch_zone import (
    BufferPolygon,
    BufferPolygonBuilder,
    BufferStatus,
    ContainmentEngine,
    InsufficientGeometryData,
    LatLng,
    RoutePath,
)
from routewatch_zone.geometry import LocalProjection, haversine_m, initial_bearing_deg
from routewatch_processor.store import InMemoryBufferStore


def equator_path():
    return RoutePath.from_records([
        {"latitude": 0.0, "longitude": 0.0, "timestamp": 0},
        {"latitude": 0.0, "longitude": 0.001, "timestamp": 1000},
    ])


def madrid_path():
    return RoutePath.from_records([
        {"latitude": 40.41680, "longitude": -3.70380, "timestamp": 0},
        {"latitude": 40.41680, "longitude": -3.70280, "timestamp": 60000},
        {"latitude": 40.41750, "longitude": -3.70280, "timestamp": 120000},
        {"latitude": 40.41750, "longitude": -3.70180, "timestamp": 180000},
    ])


def square(route_id="square"):
    return BufferPolygon(
        route_id=route_id,
        ring=(LatLng(0, 0), LatLng(0, 1), LatLng(1, 1), LatLng(1, 0)),
        radius_m=1.0,
    )


def test_straight_route_buffer():
    """Two-point path with radius 9: usable ring, midpoint inside."""
    print("\n" + "=" * 60)
    print("TEST: Straight Route Buffer")
    print("=" * 60)

    polygon = BufferPolygonBuilder(radius_m=9).build("r1", equator_path())
    print(f"✓ Built polygon with {len(polygon)} vertices")

    assert polygon.status == BufferStatus.COMPLETE
    assert len(polygon) >= 4
    assert polygon.is_usable
    assert ContainmentEngine.is_inside_any(LatLng(0.0, 0.0005), [polygon])
    print("✓ Midpoint is inside")

    # ~5.6 m off the centreline is inside, ~22 m is not
    assert ContainmentEngine.is_inside_any(LatLng(0.00005, 0.0005), [polygon])
    assert not ContainmentEngine.is_inside_any(LatLng(0.0002, 0.0005), [polygon])
    print("✓ Radius respected across the path")


def test_buffer_contains_every_route_point():
    for radius in (1.0, 9.0, 25.0):
        path = madrid_path()
        polygon = BufferPolygonBuilder(radius_m=radius).build("madrid", path)
        assert polygon.is_usable
        for point in path.points:
            assert ContainmentEngine.contains_point(point.location, polygon), (radius, point)


def test_buffer_rounds_endpoints():
    """End caps extend past the last point by (almost) the full radius."""
    polygon = BufferPolygonBuilder(radius_m=9).build("r1", equator_path())
    meters_per_degree = math.pi / 180 * 6371008.8

    beyond_end = LatLng(0.0, 0.001 + 7.0 / meters_per_degree)
    far_beyond_end = LatLng(0.0, 0.001 + 12.0 / meters_per_degree)

    assert ContainmentEngine.contains_point(beyond_end, polygon)
    assert not ContainmentEngine.contains_point(far_beyond_end, polygon)


def test_insufficient_points_write_nothing():
    store = InMemoryBufferStore()
    builder = BufferPolygonBuilder(store=store)
    single = RoutePath.from_records([{"latitude": 0.0, "longitude": 0.0, "timestamp": 0}])

    with pytest.raises(InsufficientGeometryData) as excinfo:
        builder.build("lonely", single)

    assert excinfo.value.point_count == 1
    assert store.get("lonely") is None
    assert len(store) == 0


def test_invalid_records_are_dropped():
    path = RoutePath.from_records([
        {"latitude": 0.0, "longitude": 0.001, "timestamp": 2000},
        {"latitude": 95.0, "longitude": 0.0, "timestamp": 500},
        {"latitude": None, "longitude": 0.0},
        {"latitude": 0.0, "longitude": 0.0},
    ])

    assert len(path) == 2
    # Missing timestamp sorts as 0
    assert path.points[0].longitude == 0.0
    assert path.points[1].timestamp == 2000


def test_unordered_path_is_rejected():
    from routewatch_zone import RoutePoint

    with pytest.raises(ValueError):
        RoutePath(points=(RoutePoint(0.0, 0.0, 1000), RoutePoint(0.0, 0.001, 0)))


def test_rebuild_is_idempotent():
    store = InMemoryBufferStore()
    builder = BufferPolygonBuilder(radius_m=9, store=store)

    first = builder.build("r1", equator_path())
    second = builder.build("r1", equator_path())
    assert second is first
    print("✓ Same points + radius reuse the stored polygon")

    wider = builder.build("r1", equator_path(), radius_m=15)
    assert wider is not first
    assert wider.radius_m == 15
    assert store.get("r1") is wider


def test_duplicate_points_are_collapsed():
    path = RoutePath.from_records([
        {"latitude": 0.0, "longitude": 0.0, "timestamp": 0},
        {"latitude": 0.0, "longitude": 0.0, "timestamp": 500},
        {"latitude": 0.0, "longitude": 0.001, "timestamp": 1000},
    ])
    polygon = BufferPolygonBuilder(radius_m=9).build("dup", path)

    assert polygon.status == BufferStatus.COMPLETE
    assert ContainmentEngine.contains_point(LatLng(0.0, 0.0005), polygon)


def test_stationary_route_gives_disc():
    path = RoutePath.from_records([
        {"latitude": 10.0, "longitude": 10.0, "timestamp": 0},
        {"latitude": 10.0, "longitude": 10.0, "timestamp": 1000},
    ])
    polygon = BufferPolygonBuilder(radius_m=9, arc_segments=8).build("still", path)

    assert polygon.status == BufferStatus.COMPLETE
    assert ContainmentEngine.contains_point(LatLng(10.0, 10.0), polygon)
    assert not ContainmentEngine.contains_point(LatLng(10.001, 10.0), polygon)


def test_geometry_failure_records_error_polygon():
    """Failures are recorded as error polygons, never raised."""
    store = InMemoryBufferStore()
    builder = BufferPolygonBuilder(store=store)
    builder._capsule = lambda start, end, radius: Polygon()

    polygon = builder.build("broken", equator_path())

    assert polygon.status == BufferStatus.ERROR
    assert polygon.error_reason == "calculation"
    assert not polygon.is_usable
    assert store.get("broken") is polygon


def test_multipart_buffer_keeps_first_part(monkeypatch):
    """A union that splits keeps its first part, whatever the part sizes."""
    small = Polygon([(0, -0.5), (1, -0.5), (1, 0.5), (0, 0.5)])
    large = Polygon([(100, -50), (200, -50), (200, 50), (100, 50)])
    monkeypatch.setattr(
        "routewatch_zone.geometry.buffer.unary_union",
        lambda parts: MultiPolygon([small, large]),
    )

    polygon = BufferPolygonBuilder(radius_m=9).build("split", equator_path())

    assert polygon.status == BufferStatus.COMPLETE
    # 1 m square east of the origin: every vertex within ~0.00001 deg of longitude 0
    assert max(abs(v.longitude) for v in polygon.ring) < 0.0001
    assert max(abs(v.latitude) for v in polygon.ring) < 0.0001


def test_unexpected_exception_records_error_polygon():
    builder = BufferPolygonBuilder()

    def explode(route_id, path, radius):
        raise RuntimeError("boom")

    builder._compute_ring = explode
    polygon = builder.build("broken", equator_path())

    assert polygon.status == BufferStatus.ERROR
    assert polygon.error_reason == "exception"


def test_error_polygon_is_rebuilt():
    store = InMemoryBufferStore()
    builder = BufferPolygonBuilder(store=store)
    store.put(BufferPolygon.failed(
        "r1", 9.0, "calculation", fingerprint=equator_path().fingerprint(9.0)
    ))

    polygon = builder.build("r1", equator_path())
    assert polygon.status == BufferStatus.COMPLETE


def test_builder_rejects_bad_radius():
    with pytest.raises(ValueError):
        BufferPolygonBuilder(radius_m=0)
    with pytest.raises(ValueError):
        BufferPolygonBuilder().build("r1", equator_path(), radius_m=-1)


def test_ray_casting_on_square():
    polygon = square()

    assert ContainmentEngine.contains_point(LatLng(0.5, 0.5), polygon)
    assert not ContainmentEngine.contains_point(LatLng(1.5, 0.5), polygon)
    assert not ContainmentEngine.contains_point(LatLng(0.5, -0.5), polygon)


def test_closed_and_open_rings_agree():
    open_ring = square()
    closed_ring = BufferPolygon(
        route_id="closed",
        ring=open_ring.ring + (open_ring.ring[0],),
        radius_m=1.0,
    )

    for point in (LatLng(0.5, 0.5), LatLng(0.9, 0.1), LatLng(2.0, 2.0)):
        assert (
            ContainmentEngine.contains_point(point, open_ring)
            == ContainmentEngine.contains_point(point, closed_ring)
        )


def test_union_containment_is_monotonic():
    near = BufferPolygonBuilder(radius_m=9).build("near", equator_path())
    far = BufferPolygonBuilder(radius_m=9).build("far", madrid_path())
    probes = [
        LatLng(0.0, 0.0005),
        LatLng(0.00005, 0.0009),
        LatLng(0.0002, 0.0005),
        LatLng(40.41680, -3.70300),
    ]

    for point in probes:
        if ContainmentEngine.is_inside_any(point, [near]):
            assert ContainmentEngine.is_inside_any(point, [near, far])
            assert ContainmentEngine.is_inside_any(point, [far, near])


def test_unusable_polygons_never_contain():
    point = LatLng(0.5, 0.5)
    pending = BufferPolygon.pending("p", 9.0)
    failed = BufferPolygon.failed("f", 9.0, "calculation")

    assert not ContainmentEngine.is_inside_any(point, [])
    assert not ContainmentEngine.is_inside_any(point, [pending, failed, None])
    assert ContainmentEngine.is_inside_any(point, [pending, failed, square()])
    assert ContainmentEngine.usable_polygons([pending, failed, None]) == []


def test_polygon_validation():
    with pytest.raises(ValueError):
        BufferPolygon(route_id="tri", ring=(LatLng(0, 0), LatLng(0, 1), LatLng(1, 1)), radius_m=1.0)
    with pytest.raises(ValueError):
        BufferPolygon(route_id="err", ring=(), radius_m=1.0, status=BufferStatus.ERROR)


def test_polygon_dict_form():
    polygon = BufferPolygonBuilder(radius_m=9).build("r1", equator_path())
    restored = BufferPolygon.from_dict(polygon.to_dict())

    assert restored.ring == polygon.ring
    assert restored.status == polygon.status
    assert restored.fingerprint == polygon.fingerprint


def test_projection_helpers():
    # One millidegree of longitude on the equator
    assert haversine_m(0.0, 0.0, 0.0, 0.001) == pytest.approx(111.195, rel=1e-3)
    assert initial_bearing_deg(0.0, 0.0, 0.001, 0.0) == pytest.approx(0.0, abs=1e-6)
    assert initial_bearing_deg(0.0, 0.0, 0.0, 0.001) == pytest.approx(90.0, abs=1e-6)
    assert initial_bearing_deg(0.0, 0.0, 0.0, -0.001) == pytest.approx(270.0, abs=1e-6)

    projection = LocalProjection(40.4168, -3.7038)
    xy = projection.to_xy([40.4168, 40.4178], [-3.7038, -3.7028])
    lats, lons = projection.to_latlon(xy)
    assert lats[1] == pytest.approx(40.4178, abs=1e-9)
    assert lons[1] == pytest.approx(-3.7028, abs=1e-9)
