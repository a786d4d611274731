"""
Reward Calculator - loyalty points for a completed or terminated journey

Scoring rules:
- Check-in points: 10 per checked-in stop, 5 if the QR scan was skipped
- QR compliance: (# stops checked in via qr) / (# stops with a QR code),
  1.0 when no stop has a QR code
- Completion bonus (compliance >= 0.5 only):
  milestones = floor(checked_in / original_total_stops * 4), 25 points each
- Total = check-in points + bonus, credited to the balance once per journey
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from database import KeyValueStore
from errors import StorageUnavailable
from vendor_schema import CheckInType

logger = logging.getLogger(__name__)

CHECKIN_POINTS = 10
QR_SKIPPED_POINTS = 5
MILESTONE_POINTS = 25
MILESTONES = 4  # 25% steps
MIN_QR_COMPLIANCE = 0.5

BALANCE_KEY = "user_points"
AWARDED_KEY = "points_awarded_journeys"
MAX_AWARDED_TRACKED = 100

NO_BONUS_LOW_COMPLIANCE = (
    "Completion bonus requires scanning the QR code at at least half of the "
    "stops that have one."
)


@dataclass
class RewardBreakdown:
    """Points earned for one journey"""
    checkin_points: int
    bonus_points: int
    total_points: int
    qr_compliance_rate: float
    completion_rate: float
    no_bonus_reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "checkinPoints": self.checkin_points,
            "bonusPoints": self.bonus_points,
            "totalPoints": self.total_points,
            "qrComplianceRate": round(self.qr_compliance_rate, 3),
            "completionRate": round(self.completion_rate, 3),
            "noBonusReason": self.no_bonus_reason,
        }


class RewardCalculator:
    """Scores a journey from its stops' check-in records"""

    def score(self, journey) -> RewardBreakdown:
        """
        Compute the reward breakdown for a journey record.

        Args:
            journey: JourneyRecord (stops, original_total_stops)

        Returns:
            RewardBreakdown
        """
        stops = journey.stops
        checked_in = [s for s in stops if s.checked_in]

        checkin_points = sum(
            QR_SKIPPED_POINTS if s.check_in_type is CheckInType.QR_SKIPPED else CHECKIN_POINTS
            for s in checked_in
        )

        qr_stops = [s for s in stops if s.has_qr_code]
        if qr_stops:
            scanned = sum(1 for s in stops if s.checked_in and s.check_in_type is CheckInType.QR)
            compliance = scanned / len(qr_stops)
        else:
            compliance = 1.0

        denominator = journey.original_total_stops or len(stops)
        if denominator:
            completion = len(checked_in) / denominator
            milestones = min((len(checked_in) * MILESTONES) // denominator, MILESTONES)
        else:
            completion = 0.0
            milestones = 0

        no_bonus_reason = None
        if compliance >= MIN_QR_COMPLIANCE:
            bonus_points = milestones * MILESTONE_POINTS
        else:
            bonus_points = 0
            no_bonus_reason = NO_BONUS_LOW_COMPLIANCE

        breakdown = RewardBreakdown(
            checkin_points=checkin_points,
            bonus_points=bonus_points,
            total_points=checkin_points + bonus_points,
            qr_compliance_rate=compliance,
            completion_rate=completion,
            no_bonus_reason=no_bonus_reason,
        )
        logger.info(
            f"Journey scored: {breakdown.checkin_points} check-in + {breakdown.bonus_points} bonus "
            f"= {breakdown.total_points} points (QR compliance {compliance:.0%})"
        )
        return breakdown


class PointsLedger:
    """Cumulative point balance; each journey is credited at most once"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get_balance(self) -> int:
        try:
            raw = await self.store.get(BALANCE_KEY)
        except StorageUnavailable as e:
            logger.warning(f"Could not read point balance: {e}")
            return 0
        return int(raw) if raw else 0

    async def award(self, journey_key: str, points: int) -> bool:
        """
        Add points for a journey unless it was already credited.

        Args:
            journey_key: Stable identifier of the journey (its created_at)
            points: Points to add

        Returns:
            True if the balance was updated
        """
        try:
            awarded = await self.store.get_json(AWARDED_KEY) or []
            if journey_key in awarded:
                logger.info(f"Journey {journey_key} already credited, skipping")
                return False

            balance = await self.get_balance()
            await self.store.set(BALANCE_KEY, str(balance + points))
            awarded.insert(0, journey_key)
            await self.store.set_json(AWARDED_KEY, awarded[:MAX_AWARDED_TRACKED])
        except StorageUnavailable as e:
            logger.error(f"✗ Could not credit {points} points for journey {journey_key}: {e}")
            return False

        logger.info(f"✓ Credited {points} points (balance {balance + points})")
        return True


def print_reward_summary(reward: RewardBreakdown, balance: Optional[int] = None) -> None:
    """Pretty-print a reward breakdown."""
    print("\n" + "=" * 60)
    print("🏆 JOURNEY REWARD")
    print("=" * 60)
    print(f"  ✅ Check-in points: {reward.checkin_points}")
    print(f"  🎯 Completion:      {reward.completion_rate:.0%}")
    print(f"  📷 QR compliance:   {reward.qr_compliance_rate:.0%}")
    print(f"  ✨ Bonus points:    {reward.bonus_points}")
    if reward.no_bonus_reason:
        print(f"     ({reward.no_bonus_reason})")
    print(f"{'─' * 60}")
    print(f"  TOTAL: {reward.total_points} points")
    if balance is not None:
        print(f"  Balance: {balance} points")
    print("=" * 60)
