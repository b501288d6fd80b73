"""
Feature gates - פיילוט ומתג חירום

ערכים אלו נבנים פעם אחת מתוך settings ומוזרקים לשירותים,
כך שהלוגיקה העסקית לא קוראת משתני סביבה ישירות.
"""
from dataclasses import dataclass, field

from app.core.config import Settings, settings


@dataclass(frozen=True)
class FeatureGates:
    pilot_instructor_ids: frozenset[int] = field(default_factory=frozenset)
    ai_emergency_disable: bool = False

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "FeatureGates":
        return cls(
            pilot_instructor_ids=source.pilot_instructor_ids,
            ai_emergency_disable=source.AI_EMERGENCY_DISABLE,
        )

    def is_pilot(self, instructor_id: int) -> bool:
        """רשימה ריקה פירושה שאין הגבלת פיילוט"""
        if not self.pilot_instructor_ids:
            return True
        return instructor_id in self.pilot_instructor_ids


def get_feature_gates() -> FeatureGates:
    """FastAPI dependency, נדרס בבדיקות דרך dependency_overrides"""
    return FeatureGates.from_settings()
