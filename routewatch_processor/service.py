"""
Deviation Tracking Service - Per-person deviation engine orchestrator.

This module provides the DeviationTrackingService class which orchestrates
the complete tracking flow: location samples from MQTT, containment against
the person's route buffers, debounced off-route confirmation, return
guidance, feedback cues, and MQTT publishing.

Architecture:
- One DeviationPipeline per tracked person (built lazily on first sample)
- One SessionWorker (thread + queue) per person: samples, timer callbacks,
  geometry refreshes and alarm dismissals for a person run there in order
- MQTT publishing in dedicated thread (fire-and-forget)
- Thread-safe route registry shared by all sessions

Threading Model:
- MQTT Subscriber Thread (paho-mqtt internal, enqueues samples)
- Session Worker Threads (ours, one per person)
- Timer Threads (scheduler internal, feedback ticks)
- MQTT Publisher Thread (ours)
- Control Plane Thread (paho-mqtt internal, command handlers)
"""

import threading
import queue
import logging
from typing import Any, Callable, Dict, List, Optional

from routewatch_zone import (
    BufferPolygonBuilder,
    Cue,
    CueKind,
    DeviationPipeline,
    GuidanceCalculator,
    GuidanceTarget,
    InsufficientGeometryData,
    PipelineBuilder,
    RoutePath,
    RouteStatus,
    StatusChange,
    ThreadingTimerScheduler,
)
from routewatch_zone.analytics.timers import TimerScheduler
from routewatch_mqtt.schemas import (
    Coordinate,
    CueType,
    DeviationStatus,
    DeviationStatusMessage,
    FeedbackCueMessage,
    GuidanceMessage,
    LocationMessage,
    Timestamp,
    TurnHint,
)
from routewatch_processor.config import TrackerConfig
from routewatch_processor.registry import RouteRegistry
from routewatch_processor.store import InMemoryBufferStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

_STOP = object()


class SessionWorker:
    """
    Single-threaded executor for one person's session.

    Every mutation of a session runs here, so the state machine never sees
    two events for the same person at once.
    """

    def __init__(self, session_id: str, maxsize: int = 1024):
        self.session_id = session_id
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._stopped = False
        self._thread = threading.Thread(
            target=self._run,
            name=f"SessionWorker-{session_id}",
            daemon=True,
        )
        self._thread.start()

    def submit(self, task: Callable[[], None]) -> bool:
        """Queue a task. Returns False if the worker is stopped or saturated."""
        if self._stopped:
            logger.debug(f"Worker {self.session_id} stopped, task dropped")
            return False
        try:
            self._queue.put_nowait(task)
            return True
        except queue.Full:
            logger.warning(f"⚠️ Session queue full for {self.session_id}, dropping task")
            return False

    def flush(self) -> None:
        """Block until every queued task has run."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Run what is queued, then end the thread. Safe to call multiple times."""
        if self._stopped:
            return
        self._stopped = True
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                task()
            except Exception as e:
                logger.error(
                    f"Error in session worker {self.session_id}: {e}", exc_info=True
                )
            finally:
                self._queue.task_done()


class DeviationTrackingService:
    """
    Main deviation tracking service.

    This service orchestrates the complete tracking flow:
    1. Location consumption (MessageSubscriber callback → handle_location)
    2. Containment + debounce (one DeviationPipeline per person)
    3. Guidance + feedback cues (scheduled by the pipeline)
    4. MQTT publishing (dedicated publisher thread)

    Thread Safety:
    - registry: Protected by internal lock
    - _sessions: Protected by _sessions_lock
    - publish_queue: Thread-safe queue.Queue
    - pipelines: only mutated from their own SessionWorker

    Usage:
        config = TrackerConfig.from_yaml("config.yaml")
        control_plane = MQTTControlPlane(...)

        service = DeviationTrackingService(
            config=config,
            control_plane=control_plane,
            status_publisher=DeviationStatusPublisher(...),
            guidance_publisher=GuidancePublisher(...),
            cue_publisher=FeedbackCuePublisher(...),
        )

        service.setup()
        service.start()
        service.wait()  # Blocks until stopped
    """

    def __init__(
        self,
        config: TrackerConfig,
        control_plane,  # MQTTControlPlane
        status_publisher,  # DeviationStatusPublisher
        guidance_publisher,  # GuidancePublisher
        cue_publisher,  # FeedbackCuePublisher
        subscriber=None,  # MessageSubscriber
        scheduler: Optional[TimerScheduler] = None,
    ):
        """
        Initialize deviation tracking service.

        Args:
            config: Tracker configuration
            control_plane: MQTT control plane for commands
            status_publisher: Publisher for on-route / off-route changes
            guidance_publisher: Publisher for return guidance
            cue_publisher: Publisher for alarm / directional cues
            subscriber: Location subscriber (connected on start, optional)
            scheduler: Timer scheduler (real-time threads by default)
        """
        self.config = config
        self.control_plane = control_plane
        self.status_publisher = status_publisher
        self.guidance_publisher = guidance_publisher
        self.cue_publisher = cue_publisher
        self.subscriber = subscriber
        self.scheduler = scheduler or ThreadingTimerScheduler()

        # Components
        self.store = InMemoryBufferStore()
        self.registry = RouteRegistry(self.store)
        self.builder = BufferPolygonBuilder(
            radius_m=config.buffer.radius_m,
            simplify_tolerance_m=config.buffer.simplify_tolerance_m,
            arc_segments=config.buffer.arc_segments,
            store=self.store,
        )

        # Sessions (person_id -> pipeline / worker)
        self._pipelines: Dict[str, DeviationPipeline] = {}
        self._workers: Dict[str, SessionWorker] = {}
        self._sessions_lock = threading.Lock()

        # MQTT publishing
        self.publish_queue = queue.Queue(maxsize=512)
        self.publisher_thread = None
        self.stop_event = threading.Event()

        # Lifecycle state
        self._running = False
        self._stopped_event = threading.Event()

        logger.info(
            f"DeviationTrackingService initialized for service_id={config.service_id}"
        )

    def _initialize_routes(self):
        """
        Build buffers for the routes in configuration and apply assignments.

        Called during setup phase.
        """
        for route_config in self.config.routes:
            polygon = self.register_route(
                route_config.route_id,
                route_config.points,
                route_config.radius_m,
            )
            logger.info(
                f"Initialized route: {route_config.route_id} "
                f"(status={polygon.status.value}, vertices={len(polygon)})"
            )

        for person_id, route_ids in self.config.assignments.items():
            for route_id in route_ids:
                self.registry.assign(person_id, route_id)
            logger.info(f"Assigned routes to {person_id}: {route_ids}")

    def setup(self):
        """
        Setup routes and control handlers.

        Must be called before start().
        """
        self._initialize_routes()
        self._setup_control_handlers()
        logger.info("Service setup complete")

    def _setup_control_handlers(self):
        """
        Register command handlers with control plane.

        Commands are handled by the Control Plane thread.
        """
        registry = self.control_plane.command_registry

        # Route management commands
        registry.register(
            "register_route",
            self._handle_register_route,
            "Register (or replace) a route and build its buffer",
            required_fields=("route_id", "points"),
        )
        registry.register(
            "remove_route",
            self._handle_remove_route,
            "Remove a route and its assignments",
            required_fields=("route_id",),
        )
        registry.register(
            "assign_route",
            self._handle_assign_route,
            "Assign a route to a person",
            required_fields=("person_id", "route_id"),
        )
        registry.register(
            "unassign_route",
            self._handle_unassign_route,
            "Unassign a route from a person",
            required_fields=("person_id", "route_id"),
        )
        registry.register(
            "list_routes",
            self._handle_list_routes,
            "List all routes"
        )

        # Session commands
        registry.register(
            "begin_registration",
            self._handle_begin_registration,
            "Suspend detection while a person records a route",
            required_fields=("person_id",),
        )
        registry.register(
            "end_registration",
            self._handle_end_registration,
            "Resume detection after route recording",
            required_fields=("person_id",),
        )
        registry.register(
            "dismiss_alarm",
            self._handle_dismiss_alarm,
            "Silence the alarm (directional cues continue)",
            required_fields=("person_id",),
        )
        registry.register(
            "list_sessions",
            self._handle_list_sessions,
            "List tracked sessions and their state"
        )

        logger.info("Control handlers registered")

    def start(self):
        """
        Start the tracking service (non-blocking).

        Lifecycle:
        1. Connect control plane
        2. Connect publishers
        3. Start MQTT publisher thread
        4. Connect location subscriber
        """
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting deviation tracking service")

        if not self.control_plane.connect(timeout=5.0):
            raise RuntimeError("Failed to connect to MQTT broker (control plane)")

        self.status_publisher.connect()
        self.guidance_publisher.connect()
        self.cue_publisher.connect()

        self.stop_event.clear()
        self.publisher_thread = threading.Thread(
            target=self._publish_loop,
            name="MQTTPublisherThread",
            daemon=True
        )
        self.publisher_thread.start()
        logger.info("MQTT publisher thread started")

        if self.subscriber is not None:
            if not self.subscriber.connect():
                raise RuntimeError("Failed to connect to MQTT broker (location subscriber)")
            self.subscriber.start()

        self._running = True
        self._stopped_event.clear()

        self.control_plane.publish_status("running")
        logger.info("✅ Deviation tracking service started")

    def wait(self):
        """Block until stop() is called (or KeyboardInterrupt)."""
        if not self._running:
            logger.warning("Service not running")
            return

        try:
            while not self._stopped_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Received KeyboardInterrupt, stopping...")
            self.stop()

    def stop(self):
        """
        Stop the tracking service gracefully.

        Lifecycle:
        1. Stop location subscriber
        2. Close sessions (workers drain, cues cancelled)
        3. Stop MQTT publisher thread
        4. Disconnect publishers and control plane
        """
        if not self._running:
            logger.warning("Service not running")
            return

        logger.info("Stopping deviation tracking service")

        if self.subscriber is not None:
            self.subscriber.stop()

        self.close_sessions()

        if isinstance(self.scheduler, ThreadingTimerScheduler):
            self.scheduler.shutdown()

        self.stop_event.set()
        if self.publisher_thread:
            self.publisher_thread.join(timeout=5.0)
            logger.info("MQTT publisher thread stopped")

        self.status_publisher.disconnect()
        self.guidance_publisher.disconnect()
        self.cue_publisher.disconnect()

        self.control_plane.publish_status("stopped")
        self.control_plane.disconnect()

        self._running = False
        self._stopped_event.set()
        logger.info("✅ Deviation tracking service stopped")

    # ─────────────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────────────

    def _session_for(self, person_id: str):
        """Get or lazily create (pipeline, worker) for a person."""
        with self._sessions_lock:
            pipeline = self._pipelines.get(person_id)
            if pipeline is not None:
                return pipeline, self._workers[person_id]

            deviation = self.config.deviation
            worker = SessionWorker(person_id)
            pipeline = (
                PipelineBuilder()
                .for_session(person_id)
                .with_geometry_source(self.registry.snapshot_for)
                .with_scheduler(self.scheduler)
                .with_guidance(GuidanceCalculator(
                    stride_length_m=deviation.stride_length_m,
                    turn_tolerance_deg=deviation.turn_tolerance_deg,
                ))
                .with_notifier(self._on_status_change)
                .with_guidance_listener(self._on_guidance)
                .with_cue_sink(self._on_cue)
                .with_dispatch(worker.submit)
                .with_timings(
                    confirmation_delay_ms=deviation.confirmation_delay_ms,
                    alarm_interval_ms=deviation.alarm_interval_ms,
                    directional_interval_ms=deviation.directional_interval_ms,
                )
                .with_drop_stale_samples(deviation.drop_stale_samples)
                .build()
            )
            self._pipelines[person_id] = pipeline
            self._workers[person_id] = worker

        logger.info(f"Session created: {person_id}")
        return pipeline, worker

    def handle_location(self, location_msg: LocationMessage) -> None:
        """
        Subscriber callback (MQTT Subscriber Thread).

        Only enqueues: processing happens on the person's worker.
        """
        pipeline, worker = self._session_for(location_msg.person_id)
        sample = location_msg.to_position()
        worker.submit(lambda: pipeline.process(sample))

    def refresh_sessions(self, person_ids: List[str]) -> None:
        """Re-evaluate existing sessions against their current geometry."""
        with self._sessions_lock:
            targets = [
                (self._pipelines[pid], self._workers[pid])
                for pid in person_ids
                if pid in self._pipelines
            ]
        for pipeline, worker in targets:
            worker.submit(pipeline.refresh_geometry)

    def flush(self) -> None:
        """Block until every session worker is idle."""
        with self._sessions_lock:
            workers = list(self._workers.values())
        for worker in workers:
            worker.flush()

    def close_sessions(self) -> None:
        """Stop every session: pending timers and cue streams are cancelled."""
        with self._sessions_lock:
            sessions = list(zip(self._pipelines.values(), self._workers.values()))
            self._pipelines.clear()
            self._workers.clear()

        for pipeline, worker in sessions:
            worker.submit(pipeline.close)
            worker.stop()
        if sessions:
            logger.info(f"Closed {len(sessions)} session(s)")

    def sessions(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every session, keyed by person id."""
        with self._sessions_lock:
            pipelines = dict(self._pipelines)
        return {
            person_id: {
                **pipeline.snapshot(),
                "routes": self.registry.routes_for(person_id),
                "registering": self.registry.is_registering(person_id),
            }
            for person_id, pipeline in pipelines.items()
        }

    # ─────────────────────────────────────────────────────────────────────
    # Routes
    # ─────────────────────────────────────────────────────────────────────

    def register_route(
        self,
        route_id: str,
        points: List[Dict[str, Any]],
        radius_m: Optional[float] = None,
    ):
        """
        Build the buffer for a route and (re)register it.

        Sessions assigned to the route are refreshed afterwards.

        Raises:
            InsufficientGeometryData: If fewer than 2 usable points
        """
        path = RoutePath.from_records(points)
        radius = radius_m if radius_m is not None else self.config.buffer.radius_m

        polygon = self.builder.build(route_id, path, radius)

        if self.registry.has_route(route_id):
            self.registry.update_route(route_id, path, radius)
        else:
            self.registry.add_route(route_id, path, radius)

        self.refresh_sessions(self.registry.persons_for_route(route_id))
        return polygon

    # ─────────────────────────────────────────────────────────────────────
    # Engine callbacks → publish queue
    # ─────────────────────────────────────────────────────────────────────

    def _enqueue(self, msg_type: str, msg) -> None:
        try:
            self.publish_queue.put_nowait((msg_type, msg))
        except queue.Full:
            logger.warning(f"Publish queue full, dropping {msg_type} message")

    def _on_status_change(self, change: StatusChange) -> None:
        """Notifier (Session Worker Thread)."""
        self._enqueue("status", self._build_status_message(change))

    def _on_guidance(self, person_id: str, target: Optional[GuidanceTarget]) -> None:
        """Guidance listener (Session Worker Thread)."""
        self._enqueue("guidance", self._build_guidance_message(person_id, target))

    def _on_cue(self, cue: Cue) -> None:
        """Cue sink (Timer Thread)."""
        self._enqueue("cue", self._build_cue_message(cue))

    def _build_status_message(self, change: StatusChange) -> DeviationStatusMessage:
        last_location = None
        if change.last_location is not None:
            last_location = Coordinate(
                latitude=change.last_location.latitude,
                longitude=change.last_location.longitude,
            )
        status = (
            DeviationStatus.OFF_ROUTE
            if change.status == RouteStatus.OFF_ROUTE
            else DeviationStatus.ON_ROUTE
        )
        return DeviationStatusMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            person_id=change.session_id,
            status=status,
            event_timestamp_ms=change.timestamp_ms,
            last_location=last_location,
        )

    def _build_guidance_message(
        self, person_id: str, target: Optional[GuidanceTarget]
    ) -> GuidanceMessage:
        if target is None:
            return GuidanceMessage(
                schema_version=SCHEMA_VERSION,
                timestamp=Timestamp.now(),
                person_id=person_id,
            )
        return GuidanceMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            person_id=person_id,
            steps_to_target=target.steps_to_target,
            turn_direction=TurnHint(target.turn_direction.value),
            distance_m=round(target.distance_m, 2),
            nearest_point=Coordinate(
                latitude=target.nearest_point.latitude,
                longitude=target.nearest_point.longitude,
            ),
        )

    def _build_cue_message(self, cue: Cue) -> FeedbackCueMessage:
        turn = None
        if cue.kind == CueKind.DIRECTIONAL and cue.turn_direction is not None:
            turn = TurnHint(cue.turn_direction.value)
        return FeedbackCueMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            person_id=cue.session_id,
            cue_type=CueType(cue.kind.value),
            sequence=cue.sequence,
            turn_direction=turn,
            steps_to_target=cue.steps_to_target,
        )

    def _publish_loop(self):
        """
        MQTT publisher thread loop.

        Thread: MQTT Publisher Thread (our thread)
        """
        logger.info("MQTT publisher loop started")

        while not self.stop_event.is_set():
            try:
                msg_type, msg = self.publish_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                if msg_type == "status":
                    self.status_publisher.publish_status(msg)
                elif msg_type == "guidance":
                    self.guidance_publisher.publish_guidance(msg)
                elif msg_type == "cue":
                    self.cue_publisher.publish_cue(msg)
            except Exception as e:
                logger.error(f"Error publishing {msg_type}: {e}", exc_info=True)

        logger.info("MQTT publisher loop stopped")

    # ─────────────────────────────────────────────────────────────────────
    # Command Handlers (called by Control Plane Thread)
    # ─────────────────────────────────────────────────────────────────────

    def _handle_register_route(self, command: Dict):
        """Handle register_route command (Control Plane Thread)."""
        route_id = str(command["route_id"])
        radius = command.get("radius_meters", command.get("radius_m"))

        try:
            polygon = self.register_route(
                route_id,
                list(command["points"]),
                float(radius) if radius is not None else None,
            )
        except InsufficientGeometryData as e:
            self.control_plane.publish_status(
                "route_rejected",
                {"route_id": route_id, "points": e.point_count, "error": str(e)},
            )
            logger.warning(f"Route rejected: {e}")
            return

        person_id = command.get("person_id")
        if person_id:
            self.registry.assign(str(person_id), route_id)
            self.refresh_sessions([str(person_id)])

        self.control_plane.publish_status(
            "route_registered",
            {
                "route_id": route_id,
                "buffer_status": polygon.status.value,
                "buffer_vertices": len(polygon),
                "error_reason": polygon.error_reason,
            },
        )
        logger.info(f"Route registered: {route_id} ({polygon.status.value})")

    def _handle_remove_route(self, command: Dict):
        """Handle remove_route command (Control Plane Thread)."""
        route_id = str(command["route_id"])
        affected = self.registry.remove_route(route_id)
        self.refresh_sessions(affected)

        self.control_plane.publish_status(
            "route_removed", {"route_id": route_id, "affected": affected}
        )
        logger.info(f"Route removed: {route_id} (affected={affected})")

    def _handle_assign_route(self, command: Dict):
        """Handle assign_route command (Control Plane Thread)."""
        person_id = str(command["person_id"])
        route_id = str(command["route_id"])
        self.registry.assign(person_id, route_id)
        self.refresh_sessions([person_id])

        self.control_plane.publish_status(
            "route_assigned", {"person_id": person_id, "route_id": route_id}
        )
        logger.info(f"Route {route_id} assigned to {person_id}")

    def _handle_unassign_route(self, command: Dict):
        """Handle unassign_route command (Control Plane Thread)."""
        person_id = str(command["person_id"])
        route_id = str(command["route_id"])
        removed = self.registry.unassign(person_id, route_id)
        if removed:
            self.refresh_sessions([person_id])

        self.control_plane.publish_status(
            "route_unassigned",
            {"person_id": person_id, "route_id": route_id, "removed": removed},
        )
        logger.info(f"Route {route_id} unassigned from {person_id} (removed={removed})")

    def _handle_list_routes(self, command: Dict):
        """Handle list_routes command (Control Plane Thread)."""
        routes = {
            route_id: self.registry.get_route_info(route_id)
            for route_id in self.registry.list_routes()
        }

        self.control_plane.publish_status("routes_list", {"routes": routes})
        logger.info(f"Listed routes: {list(routes.keys())}")

    def _handle_begin_registration(self, command: Dict):
        """Handle begin_registration command (Control Plane Thread)."""
        person_id = str(command["person_id"])
        self.registry.set_registering(person_id, True)
        self.refresh_sessions([person_id])

        self.control_plane.publish_status("registration_started", {"person_id": person_id})
        logger.info(f"Route registration started for {person_id} (detection suspended)")

    def _handle_end_registration(self, command: Dict):
        """Handle end_registration command (Control Plane Thread)."""
        person_id = str(command["person_id"])
        self.registry.set_registering(person_id, False)
        self.refresh_sessions([person_id])

        self.control_plane.publish_status("registration_ended", {"person_id": person_id})
        logger.info(f"Route registration ended for {person_id}")

    def _handle_dismiss_alarm(self, command: Dict):
        """Handle dismiss_alarm command (Control Plane Thread)."""
        person_id = str(command["person_id"])
        with self._sessions_lock:
            pipeline = self._pipelines.get(person_id)
            worker = self._workers.get(person_id)

        if pipeline is None:
            raise KeyError(f"No session for person '{person_id}'")

        worker.submit(pipeline.dismiss_alarm)
        self.control_plane.publish_status("alarm_dismissed", {"person_id": person_id})
        logger.info(f"Alarm dismissed for {person_id}")

    def _handle_list_sessions(self, command: Dict):
        """Handle list_sessions command (Control Plane Thread)."""
        sessions = self.sessions()

        self.control_plane.publish_status("sessions_list", {"sessions": sessions})
        logger.info(f"Listed sessions: {list(sessions.keys())}")
