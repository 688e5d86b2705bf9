"""
Mission Control: the draft/active stepper over a saved syllabus.

In *draft* mode the learner picks which steps to keep; confirming the path
switches to *active* mode, where the confirmed steps are worked through one
at a time.  The state is persisted as a small JSON document on the saved
syllabus (see :meth:`MissionControl.to_persisted`).

The module also carries the learning-path constraint helpers (depth
recommendation and feasibility checks) used when a learner sizes a plan.
"""
from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

logger = logging.getLogger(__name__)

MODE_DRAFT = "draft"
MODE_ACTIVE = "active"


class MissionControl:
    """
    Selection state machine over the steps of one syllabus.

    Steps are module dicts; each gets an ``original_index`` matching its
    position in the syllabus.
    """

    def __init__(self, steps: Sequence[Mapping[str, Any]]) -> None:
        self.steps: List[Dict[str, Any]] = [
            {**step, "original_index": i} for i, step in enumerate(steps)
        ]
        self.mode: str = MODE_DRAFT
        self.selected_steps: Set[int] = set(range(len(self.steps)))
        self.active_step_index: Optional[int] = None
        self.confirmed_steps: List[Dict[str, Any]] = []

    @classmethod
    def from_persisted(
        cls,
        steps: Sequence[Mapping[str, Any]],
        persisted: Optional[Mapping[str, Any]],
    ) -> "MissionControl":
        """
        Rebuild the stepper from its persisted form.

        A state saved against a different list of step titles is discarded
        and the stepper starts fresh in draft mode.  Confirmed titles that no
        longer exist are dropped.
        """
        mc = cls(steps)
        if not persisted:
            return mc

        saved_titles = persisted.get("step_titles")
        if saved_titles is not None and list(saved_titles) != mc.titles:
            logger.info("Syllabus steps changed, resetting mission state")
            return mc

        mc.selected_steps = {
            i for i in persisted.get("selected_step_indices") or [] if mc._in_range(i)
        }
        if persisted.get("mode") == MODE_ACTIVE:
            mc.mode = MODE_ACTIVE
            mc.confirmed_steps = mc._restore_confirmed(persisted)
            index = persisted.get("active_step_index")
            if isinstance(index, int) and 0 <= index < len(mc.confirmed_steps):
                mc.active_step_index = index
            else:
                mc.active_step_index = 0 if mc.confirmed_steps else None
        return mc

    def to_persisted(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "confirmed_step_titles": [s["title"] for s in self.confirmed_steps],
            "confirmed_step_indices": [s["original_index"] for s in self.confirmed_steps],
            "active_step_index": self.active_step_index,
            "selected_step_indices": sorted(self.selected_steps),
            "step_titles": self.titles,
        }

    def _restore_confirmed(self, persisted: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """
        Confirmed steps from their saved syllabus positions.

        States saved with titles only map each title to the first unused
        step carrying it, so repeated titles keep their own steps.
        """
        indices = persisted.get("confirmed_step_indices")
        if indices is not None:
            return [self.steps[i] for i in sorted(set(indices)) if self._in_range(i)]

        restored: List[Dict[str, Any]] = []
        used: Set[int] = set()
        for title in persisted.get("confirmed_step_titles") or []:
            for step in self.steps:
                if step["title"] == title and step["original_index"] not in used:
                    used.add(step["original_index"])
                    restored.append(step)
                    break
        return sorted(restored, key=lambda s: s["original_index"])

    @property
    def titles(self) -> List[str]:
        return [s["title"] for s in self.steps]

    def _in_range(self, index: Any) -> bool:
        return isinstance(index, int) and 0 <= index < len(self.steps)

    def _check_index(self, index: int) -> None:
        if not self._in_range(index):
            raise ValueError(f"Step index {index} out of range (0-{len(self.steps) - 1})")

    # ------------------------------------------------------------------
    # Draft-mode selection
    # ------------------------------------------------------------------

    def toggle_step(self, index: int) -> None:
        self._check_index(index)
        if index in self.selected_steps:
            self.selected_steps.discard(index)
        else:
            self.selected_steps.add(index)

    def select_all(self) -> None:
        self.selected_steps = set(range(len(self.steps)))

    def deselect_all(self) -> None:
        self.selected_steps = set()

    def reset_selection(self) -> None:
        self.select_all()

    def reset(self) -> None:
        """Back to draft with every step selected."""
        self.mode = MODE_DRAFT
        self.select_all()
        self.active_step_index = None
        self.confirmed_steps = []

    # ------------------------------------------------------------------
    # Active mode
    # ------------------------------------------------------------------

    def confirm_path(self) -> List[str]:
        """
        Lock in the current selection and switch to active mode.

        Returns the confirmed step titles in syllabus order, or an empty
        list (with no state change) when nothing is selected.
        """
        if not self.selected_steps:
            return []

        self.confirmed_steps = [self.steps[i] for i in sorted(self.selected_steps)]
        self.active_step_index = 0
        self.mode = MODE_ACTIVE
        titles = [s["title"] for s in self.confirmed_steps]
        logger.info("Mission path confirmed with %d steps", len(titles))
        return titles

    def navigate_to_step(self, index: int) -> None:
        """Make confirmed step *index* the current one."""
        if self.mode != MODE_ACTIVE:
            raise ValueError("Mission path has not been confirmed")
        if not 0 <= index < len(self.confirmed_steps):
            raise ValueError(
                f"Step index {index} out of range (0-{len(self.confirmed_steps) - 1})"
            )
        self.active_step_index = index

    def re_enable_step(self, original_index: int) -> None:
        """Bring a skipped step back into the confirmed path, in syllabus order."""
        self._check_index(original_index)
        self.selected_steps.add(original_index)
        if self.mode != MODE_ACTIVE:
            return
        if any(s["original_index"] == original_index for s in self.confirmed_steps):
            return

        current = self.current_step
        self.confirmed_steps = sorted(
            self.confirmed_steps + [self.steps[original_index]],
            key=lambda s: s["original_index"],
        )
        # keep pointing at the same step after the insert
        if current is not None:
            self.active_step_index = self.confirmed_steps.index(current)

    @property
    def current_step(self) -> Optional[Dict[str, Any]]:
        if self.active_step_index is None:
            return None
        if 0 <= self.active_step_index < len(self.confirmed_steps):
            return self.confirmed_steps[self.active_step_index]
        return None

    @property
    def stats(self) -> Dict[str, Any]:
        selected = [self.steps[i] for i in sorted(self.selected_steps)]
        return {
            "total": len(self.steps),
            "selected": len(selected),
            "estimated_hours": float(sum(s.get("estimated_hours") or 1 for s in selected)),
        }


def active_steps(
    modules: Sequence[Mapping[str, Any]],
    persisted: Optional[Mapping[str, Any]],
) -> Optional[List[Dict[str, Any]]]:
    """Confirmed steps of an active mission, or None when still in draft."""
    mc = MissionControl.from_persisted(modules, persisted)
    if mc.mode != MODE_ACTIVE:
        return None
    return mc.confirmed_steps


# ---------------------------------------------------------------------------
# Learning-path constraints
# ---------------------------------------------------------------------------

# Base hours needed for each depth level
DEPTH_THRESHOLDS: Dict[str, Dict[str, int]] = {
    "overview": {"min": 5, "typical": 10},
    "standard": {"min": 15, "typical": 30},
    "detailed": {"min": 50, "typical": 80},
}

SKILL_MULTIPLIERS: Dict[str, float] = {
    "beginner": 1.3,
    "intermediate": 1.0,
    "advanced": 0.7,
}

DEPTH_DESCRIPTIONS: Dict[str, str] = {
    "overview": "Quick introduction covering core concepts only",
    "standard": "Balanced curriculum with solid understanding",
    "detailed": "Comprehensive mastery with deep exploration",
}

DEPTH_COVERAGE: Dict[str, int] = {
    "overview": 40,
    "standard": 75,
    "detailed": 100,
}


def _multiplier(skill_level: str) -> float:
    try:
        return SKILL_MULTIPLIERS[skill_level]
    except KeyError:
        raise ValueError(f"Unknown skill level: {skill_level}")


def compute_recommended_depth(total_hours: float, skill_level: str) -> Dict[str, Any]:
    """
    Depth a learner can reach in *total_hours*.

    Returns ``{"depth", "feasible", "coverage_percent"}``; ``depth`` is None
    when even an overview does not fit.
    """
    adjusted = total_hours / _multiplier(skill_level)

    if adjusted < DEPTH_THRESHOLDS["overview"]["min"]:
        return {"depth": None, "feasible": False, "coverage_percent": 0}
    if adjusted < DEPTH_THRESHOLDS["standard"]["min"]:
        depth = "overview"
    elif adjusted < DEPTH_THRESHOLDS["detailed"]["min"]:
        depth = "standard"
    else:
        depth = "detailed"
    return {"depth": depth, "feasible": True, "coverage_percent": DEPTH_COVERAGE[depth]}


def validate_feasibility(
    hours_per_week: float, duration_weeks: float, skill_level: str
) -> Dict[str, Any]:
    """
    Check whether a weekly plan is achievable.

    Returns a dict with ``status`` (``valid``, ``warning`` or
    ``impossible``), ``message`` and, when impossible, the
    ``suggested_hours_per_week`` / ``suggested_weeks`` that would fix it.
    """
    total_hours = hours_per_week * duration_weeks
    min_required = DEPTH_THRESHOLDS["overview"]["min"] * _multiplier(skill_level)

    if total_hours < min_required:
        return {
            "status": "impossible",
            "message": (
                f"Your {total_hours:g} available hours aren't enough for even an overview "
                f"(minimum {math.ceil(min_required)} hours needed)."
            ),
            "suggested_hours_per_week": math.ceil(min_required / duration_weeks),
            "suggested_weeks": math.ceil(min_required / hours_per_week),
        }

    if hours_per_week > 40:
        return {
            "status": "warning",
            "message": "This is an intensive schedule (over 40 hours/week). Make sure you have the time.",
            "suggested_hours_per_week": 20,
            "suggested_weeks": None,
        }

    if skill_level == "beginner" and duration_weeks < 2 and hours_per_week < 10:
        return {
            "status": "warning",
            "message": "As a beginner with limited time, you may find this pace challenging.",
            "suggested_hours_per_week": 5,
            "suggested_weeks": 4,
        }

    return {
        "status": "valid",
        "message": "Your plan is achievable! This pace allows comfortable learning with review time.",
        "suggested_hours_per_week": None,
        "suggested_weeks": None,
    }


def calculate_completion_date(duration_weeks: float, today: Optional[date] = None) -> date:
    today = today or date.today()
    return today + timedelta(days=round(duration_weeks * 7))


def plan_summary(
    hours_per_week: float,
    duration_weeks: float,
    skill_level: str,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Feasibility, recommended depth and completion date in one payload."""
    total_hours = hours_per_week * duration_weeks
    depth = compute_recommended_depth(total_hours, skill_level)
    result = validate_feasibility(hours_per_week, duration_weeks, skill_level)
    result.update(
        {
            "total_hours": total_hours,
            "recommended_depth": depth["depth"],
            "coverage_percent": depth["coverage_percent"],
            "estimated_completion_date": calculate_completion_date(duration_weeks, today),
        }
    )
    return result
