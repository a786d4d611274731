"""
Journey State Machine - the single active-journey slot

States: inactive → active → completing | terminating → inactive

Persistence (JSON under the key-value store):
- current_journey      JourneyRecord (schemaVersion 1)
- current_route_data   RouteSummary
- journey_history      completed journeys, most recent first, capped at 20

Every transition updates memory first and then writes the record. Writes
are sequenced (journey before route data) but not atomic; a crash can lose
the last transition. A persisted journey older than 24 hours is discarded
on recovery.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import Field, ValidationError, model_validator

from database import KeyValueStore
from errors import USER_MESSAGES, ErrorKind, InvalidTransition, StorageUnavailable
from journey_planner import PlanResult, RouteSummary
from proximity_ranker import ProximityRanker
from redemption_service import RedemptionEligibilityTracker
from reward_calculator import PointsLedger, RewardBreakdown, RewardCalculator
from vendor_schema import (
    CheckInType,
    Coordinates,
    DealType,
    VendorRecord,
    WireModel,
    flatten_deals,
    as_aware,
    local_now,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
CURRENT_JOURNEY_KEY = "current_journey"
ROUTE_DATA_KEY = "current_route_data"
HISTORY_KEY = "journey_history"
HISTORY_LIMIT = 20
JOURNEY_LEASE = timedelta(hours=24)


# ============================================================================
# RECORDS
# ============================================================================

class StopRecord(WireModel):
    """A vendor copied into a journey together with its check-in status"""
    vendor: VendorRecord
    deal_type: DealType = Field(..., alias="dealType")
    checked_in: bool = Field(False, alias="checkedIn")
    check_in_type: CheckInType = Field(CheckInType.NONE, alias="checkInType")
    checked_in_at: Optional[datetime] = Field(None, alias="checkedInAt")
    has_qr_code: bool = Field(True, alias="hasQrCode")
    has_redeemable_deal: bool = Field(True, alias="hasRedeemableDeal")
    distance: float = 0.0  # miles from previous stop (or origin)
    distance_from_origin: float = Field(0.0, alias="distanceFromOrigin")

    @property
    def id(self) -> str:
        return self.vendor.id

    @property
    def name(self) -> str:
        return self.vendor.name


def _migrate_legacy_stop(vendor: Dict, deal_type) -> Dict:
    return {
        "vendor": vendor,
        "dealType": vendor.get("dealType") or deal_type,
        "checkedIn": bool(vendor.get("checkedIn", False)),
        "checkInType": vendor.get("checkInType") or CheckInType.NONE.value,
        "hasQrCode": vendor.get("hasQrCode", True) is not False,
        "distance": vendor.get("distance") or 0.0,
        "distanceFromOrigin": vendor.get("distance") or 0.0,
    }


class JourneyRecord(WireModel):
    """The persisted journey"""
    schema_version: int = Field(SCHEMA_VERSION, alias="schemaVersion")
    deal_type: DealType = Field(..., alias="dealType")
    stops: List[StopRecord] = Field(default_factory=list)
    current_stop_index: int = Field(0, alias="currentStopIndex")
    total_stops: int = Field(0, alias="totalStops")
    original_total_stops: int = Field(0, alias="originalTotalStops")
    max_distance: float = Field(0.0, alias="maxDistance")
    origin: Optional[Coordinates] = None
    created_at: datetime = Field(..., alias="createdAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    terminated: bool = False

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data):
        if not isinstance(data, dict):
            return data
        version = data.get("schemaVersion", data.get("schema_version", 0))
        if version == 0 and "vendors" in data:
            # Legacy layout: vendors / currentVendorIndex / totalVendors
            data = dict(data)
            deal_type = data.get("dealType")
            data["stops"] = [_migrate_legacy_stop(v, deal_type) for v in data.pop("vendors") or []]
            data.setdefault("currentStopIndex", data.pop("currentVendorIndex", 0))
            data.setdefault("totalStops", data.pop("totalVendors", len(data["stops"])))
            data["schemaVersion"] = SCHEMA_VERSION
        if not data.get("originalTotalStops") and not data.get("original_total_stops"):
            data = dict(data)
            stops = data.get("stops")
            count = len(stops) if isinstance(stops, list) else 0
            total = data.get("totalStops", data.get("total_stops"))
            data["originalTotalStops"] = max(total if isinstance(total, int) else 0, count)
        return data

    @model_validator(mode="after")
    def _check_index(self):
        self.normalize()
        return self

    def normalize(self) -> None:
        """Re-establish totalStops == len(stops) and a valid currentStopIndex."""
        self.total_stops = len(self.stops)
        if not self.stops:
            self.current_stop_index = 0
        else:
            self.current_stop_index = max(0, min(self.current_stop_index, len(self.stops) - 1))

    @property
    def current_stop(self) -> Optional[StopRecord]:
        return self.stops[self.current_stop_index] if self.stops else None

    def is_at_final_stop(self) -> bool:
        return not self.stops or self.current_stop_index >= len(self.stops) - 1

    def to_storage(self) -> Dict:
        return self.model_dump(mode="json", by_alias=True)


class JourneyState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    COMPLETING = "completing"
    TERMINATING = "terminating"


@dataclass
class RecoveryResult:
    status: str  # none | restored | expired | corrupt
    journey: Optional[JourneyRecord] = None
    error: Optional[ErrorKind] = None

    @property
    def message(self) -> Optional[str]:
        return USER_MESSAGES[self.error] if self.error else None


@dataclass
class JourneyOutcome:
    """What complete()/terminate() hand back to the caller"""
    record: JourneyRecord
    reward: RewardBreakdown
    summary: Dict


# ============================================================================
# STATE MACHINE
# ============================================================================

class JourneyStateMachine:
    """Owns the one active journey and its persisted copy"""

    def __init__(
        self,
        store: KeyValueStore,
        tracker: RedemptionEligibilityTracker,
        calculator: Optional[RewardCalculator] = None,
        ledger: Optional[PointsLedger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tz=None,
        strict: bool = False,
    ):
        """
        Initialize the state machine.

        Args:
            store: Durable key-value store
            tracker: Records redemptions on check-in
            calculator: Scores journeys on complete/terminate
            ledger: Credits points once per journey (optional)
            clock: Returns the current timezone-aware local time
            tz: Local timezone used when no clock is supplied
            strict: Raise InvalidTransition on illegal transitions instead
                of logging and ignoring them
        """
        self.store = store
        self.tracker = tracker
        self.calculator = calculator or RewardCalculator()
        self.ledger = ledger
        self.tz = tz
        self._clock = clock or (lambda: local_now(tz))
        self.strict = strict

        self._state = JourneyState.INACTIVE
        self._journey: Optional[JourneyRecord] = None
        self._route: Optional[RouteSummary] = None

    @property
    def state(self) -> JourneyState:
        return self._state

    @property
    def current_journey(self) -> Optional[JourneyRecord]:
        return self._journey

    @property
    def route_data(self) -> Optional[RouteSummary]:
        return self._route

    def _reject(self, action: str, reason: str):
        message = f"Cannot {action} journey: {reason} (state={self._state.value})"
        if self.strict:
            raise InvalidTransition(message)
        logger.warning(message)
        return None

    def _require_active(self, action: str) -> bool:
        if self._state is not JourneyState.ACTIVE or self._journey is None:
            self._reject(action, "no active journey")
            return False
        return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, plan: PlanResult) -> Optional[JourneyRecord]:
        """
        Start a journey from a successful plan.

        Only valid while inactive; an active journey must be terminated first.
        """
        if self._state is not JourneyState.INACTIVE:
            return self._reject("start", "a journey is already active")
        if not plan.success or not plan.vendors:
            return self._reject("start", "plan has no stops")

        locations = [ranked.location for ranked in plan.vendors]
        if plan.origin is not None:
            legs = ProximityRanker().leg_distances(plan.origin, locations)
        else:
            legs = [plan.vendors[0].distance] + [
                a.distance_to(b) for a, b in zip(locations, locations[1:])
            ]

        stops = [
            StopRecord(
                vendor=ranked.vendor.model_copy(deep=True),
                deal_type=plan.deal_type,
                has_qr_code=ranked.vendor.has_qr_code,
                has_redeemable_deal=bool(flatten_deals(ranked.vendor, plan.deal_type)),
                distance=leg,
                distance_from_origin=ranked.distance,
            )
            for ranked, leg in zip(plan.vendors, legs)
        ]

        journey = JourneyRecord(
            deal_type=plan.deal_type,
            stops=stops,
            current_stop_index=0,
            total_stops=len(stops),
            original_total_stops=len(stops),
            max_distance=plan.max_distance_miles,
            origin=Coordinates(**plan.origin.to_dict()) if plan.origin else None,
            created_at=self._clock(),
        )

        self._journey = journey
        self._route = plan.route
        self._state = JourneyState.ACTIVE
        await self._persist()
        await self._persist_route()

        logger.info(f"✓ Journey started: {len(stops)} {plan.deal_type.value} stops")
        return journey

    async def advance(self) -> Optional[JourneyRecord]:
        """Move to the next stop; at the final stop nothing changes and complete() is due."""
        if not self._require_active("advance"):
            return None

        journey = self._journey
        if journey.is_at_final_stop():
            logger.info("Already at the final stop, complete() the journey to finish")
            return journey

        journey.current_stop_index += 1
        await self._persist()
        logger.info(f"Advanced to stop {journey.current_stop_index + 1}/{journey.total_stops}")
        return journey

    async def skip(self) -> Optional[JourneyRecord]:
        """Drop the current stop and renormalize index and stop count."""
        if not self._require_active("skip"):
            return None

        journey = self._journey
        if journey.stops:
            skipped = journey.stops.pop(journey.current_stop_index)
            logger.info(f"Skipped stop {skipped.name} ({skipped.id})")

        if not journey.stops:
            journey.current_stop_index = 0
        elif journey.current_stop_index >= len(journey.stops):
            journey.current_stop_index = len(journey.stops) - 1
        journey.total_stops = len(journey.stops)

        await self._persist()
        return journey

    async def mark_checked_in(
        self,
        stop_index: Optional[int] = None,
        check_in_type: CheckInType = CheckInType.QR,
    ) -> Optional[StopRecord]:
        """
        Check in at a stop (the current one by default).

        At a stop without a QR code every check-in is stored as 'none'.
        Records today's redemption when the stop's deal is redeemable.
        """
        if not self._require_active("check in"):
            return None

        journey = self._journey
        index = journey.current_stop_index if stop_index is None else stop_index
        if not 0 <= index < len(journey.stops):
            return self._reject("check in", f"stop index {index} out of range")

        stop = journey.stops[index]
        if stop.checked_in:
            logger.info(f"Stop {stop.id} already checked in")
            return stop

        check_in_type = CheckInType(check_in_type)
        if not stop.has_qr_code:
            check_in_type = CheckInType.NONE

        stop.checked_in = True
        stop.check_in_type = check_in_type
        stop.checked_in_at = self._clock()
        await self._persist()

        if stop.has_redeemable_deal:
            await self.tracker.record_redemption(stop.id, stop.deal_type)

        logger.info(f"✓ Checked in at {stop.name} ({check_in_type.value})")
        return stop

    async def complete(self) -> Optional[JourneyOutcome]:
        """Finish the journey at its final stop, score it and clear the slot."""
        if not self._require_active("complete"):
            return None
        if not self._journey.is_at_final_stop():
            return self._reject("complete", "not at the final stop")
        return await self._finish(terminated=False)

    async def terminate(self) -> Optional[JourneyOutcome]:
        """End the journey early. Scored the same way as complete()."""
        if not self._require_active("terminate"):
            return None
        return await self._finish(terminated=True)

    async def clear(self) -> None:
        """Discard any journey without scoring it."""
        self._journey = None
        self._route = None
        self._state = JourneyState.INACTIVE
        await self._clear_storage()
        logger.info("Journey cleared")

    async def _finish(self, terminated: bool) -> JourneyOutcome:
        journey = self._journey
        self._state = JourneyState.TERMINATING if terminated else JourneyState.COMPLETING

        journey.completed_at = self._clock()
        journey.terminated = terminated
        reward = self.calculator.score(journey)

        if self.ledger is not None:
            await self.ledger.award(journey.created_at.isoformat(), reward.total_points)

        summary = self._summarize(journey, reward)
        await self._append_history(summary)
        await self._clear_storage()

        self._journey = None
        self._route = None
        self._state = JourneyState.INACTIVE

        verb = "terminated" if terminated else "completed"
        logger.info(f"✓ Journey {verb}: {reward.total_points} points")
        return JourneyOutcome(record=journey, reward=reward, summary=summary)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover(self) -> RecoveryResult:
        """
        Restore a persisted journey at process start.

        Returns:
            RecoveryResult with status none | restored | expired | corrupt
        """
        if self._state is JourneyState.ACTIVE:
            return RecoveryResult("restored", self._journey)

        try:
            payload = await self.store.get_json(CURRENT_JOURNEY_KEY)
        except StorageUnavailable as e:
            logger.error(f"✗ Could not read persisted journey: {e}")
            return RecoveryResult("none")
        except ValueError as e:
            logger.error(f"✗ Persisted journey is not valid JSON: {e}")
            await self._clear_storage()
            return RecoveryResult("corrupt")

        if payload is None:
            return RecoveryResult("none")

        try:
            journey = JourneyRecord.model_validate(payload)
        except ValidationError as e:
            logger.error(f"✗ Persisted journey is unreadable, clearing it: {e.error_count()} errors")
            await self._clear_storage()
            return RecoveryResult("corrupt")

        now = self._clock()
        created_at = as_aware(journey.created_at, now.tzinfo)
        if now - created_at > JOURNEY_LEASE:
            logger.info(f"Persisted journey from {created_at.isoformat()} expired, clearing it")
            await self._clear_storage()
            return RecoveryResult("expired", journey, ErrorKind.EXPIRED_JOURNEY)

        self._journey = journey
        self._route = await self._load_route()
        self._state = JourneyState.ACTIVE

        if payload.get("schemaVersion", 0) != SCHEMA_VERSION:
            logger.info("Migrated persisted journey to the current schema")
            await self._persist()

        logger.info(f"✓ Journey restored at stop {journey.current_stop_index + 1}/{journey.total_stops}")
        return RecoveryResult("restored", journey)

    async def _load_route(self) -> Optional[RouteSummary]:
        try:
            data = await self.store.get_json(ROUTE_DATA_KEY)
        except (StorageUnavailable, ValueError) as e:
            logger.warning(f"Route data not restored: {e}")
            return None
        return RouteSummary.from_dict(data) if data else None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_journey_history(self, limit: int = HISTORY_LIMIT) -> List[Dict]:
        try:
            history = await self.store.get_json(HISTORY_KEY) or []
        except (StorageUnavailable, ValueError) as e:
            logger.warning(f"Could not read journey history: {e}")
            return []
        return history[:limit]

    async def _append_history(self, summary: Dict) -> None:
        history = await self.get_journey_history()
        history.insert(0, summary)
        try:
            await self.store.set_json(HISTORY_KEY, history[:HISTORY_LIMIT])
        except StorageUnavailable as e:
            logger.error(f"✗ Journey history not saved: {e}")

    @staticmethod
    def _summarize(journey: JourneyRecord, reward: RewardBreakdown) -> Dict:
        return {
            "dealType": journey.deal_type.value,
            "createdAt": journey.created_at.isoformat(),
            "completedAt": journey.completed_at.isoformat() if journey.completed_at else None,
            "terminated": journey.terminated,
            "totalStops": journey.original_total_stops,
            "stopsVisited": sum(1 for s in journey.stops if s.checked_in),
            "vendors": [
                {
                    "id": s.id,
                    "name": s.name,
                    "checkedIn": s.checked_in,
                    "checkInType": s.check_in_type.value,
                }
                for s in journey.stops
            ],
            "reward": reward.to_dict(),
        }

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _persist(self) -> None:
        try:
            await self.store.set_json(CURRENT_JOURNEY_KEY, self._journey.to_storage())
        except StorageUnavailable as e:
            logger.error(f"✗ Journey state not persisted: {e}")

    async def _persist_route(self) -> None:
        if self._route is None:
            return
        try:
            await self.store.set_json(ROUTE_DATA_KEY, self._route.to_dict())
        except StorageUnavailable as e:
            logger.error(f"✗ Route data not persisted: {e}")

    async def _clear_storage(self) -> None:
        try:
            await self.store.multi_remove([CURRENT_JOURNEY_KEY, ROUTE_DATA_KEY])
        except StorageUnavailable as e:
            logger.error(f"✗ Could not clear persisted journey: {e}")
