from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from chain.builder import (  # noqa: E402
    build_chain_for_selection,
    build_chain_with_finishing_service,
    compute_chain_phases,
    find_matching_combo,
    get_chain_total_duration,
    validate_combo,
)
from models import MultiBookingCombo, PricingItem, Service  # noqa: E402

COLOR = Service(id="svc-color", name="גוונים")
BLOWDRY = Service(id="svc-blowdry", name="פן")
TONER = Service(id="svc-toner", name="טונר")
SERVICES = [COLOR, BLOWDRY, TONER]

PRICING = [
    PricingItem.from_dict({"id": "p-color", "serviceId": "svc-color", "durationMaxMinutes": 60}),
    PricingItem.from_dict({"id": "p-blowdry", "serviceId": "svc-blowdry", "durationMinMinutes": 30}),
    PricingItem.from_dict(
        {
            "id": "p-color-toner",
            "serviceId": "svc-color",
            "durationMaxMinutes": 60,
            "hasFollowUp": True,
            "followUp": {"name": "טונר", "serviceId": "svc-toner", "durationMinutes": 20, "waitMinutes": 15},
        }
    ),
    PricingItem.from_dict(
        {
            "id": "p-blowdry-toner",
            "serviceId": "svc-blowdry",
            "durationMaxMinutes": 30,
            "hasFollowUp": True,
            "followUp": {"name": "טונר", "serviceId": "svc-toner", "durationMinutes": 20, "waitMinutes": 5},
        }
    ),
]


def _names(chain):
    return [entry.service.name for entry in chain]


class PricingDurationTests(unittest.TestCase):
    def test_duration_fallbacks(self) -> None:
        self.assertEqual(PricingItem(id="a", service_id="s", duration_min_minutes=40, duration_max_minutes=50).duration_minutes, 50)
        self.assertEqual(PricingItem(id="a", service_id="s", duration_min_minutes=40).duration_minutes, 40)
        self.assertEqual(PricingItem.from_dict({"id": "a", "serviceId": "s", "durationMinutes": 25}).duration_minutes, 25)
        self.assertEqual(PricingItem(id="a", service_id="s").duration_minutes, 30)

    def test_follow_up_needs_a_name(self) -> None:
        item = PricingItem.from_dict(
            {"id": "a", "serviceId": "s", "hasFollowUp": True, "followUp": {"name": " ", "durationMinutes": 20}}
        )
        self.assertIsNone(item.active_follow_up)

    def test_switched_off_follow_up_is_ignored(self) -> None:
        item = PricingItem.from_dict(
            {"id": "a", "serviceId": "s", "hasFollowUp": False, "followUp": {"name": "טונר", "durationMinutes": 20}}
        )
        self.assertIsNone(item.active_follow_up)

    def test_zero_minute_follow_up_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            PricingItem.from_dict(
                {"id": "a", "serviceId": "s", "hasFollowUp": True, "followUp": {"name": "טונר", "durationMinutes": 0}}
            )


class SingleSelectionTests(unittest.TestCase):
    def test_plain_item(self) -> None:
        chain = build_chain_for_selection(["p-color"], SERVICES, PRICING)
        self.assertEqual(_names(chain), ["גוונים"])
        self.assertEqual(get_chain_total_duration(chain), 60)

    def test_follow_up_is_appended_with_wait(self) -> None:
        chain = build_chain_for_selection(["p-color-toner"], SERVICES, PRICING)
        self.assertEqual(_names(chain), ["גוונים", "טונר"])
        self.assertTrue(chain[1].follow_up)
        self.assertEqual(chain[1].gap_minutes, 15)
        self.assertEqual(chain[1].duration_minutes, 20)
        self.assertEqual(get_chain_total_duration(chain), 95)

    def test_expansion_is_idempotent(self) -> None:
        chain = build_chain_for_selection(["p-color-toner"], SERVICES, PRICING)
        self.assertEqual(build_chain_with_finishing_service(chain, SERVICES, PRICING), chain)
        self.assertEqual(get_chain_total_duration(chain[:1]), get_chain_total_duration(chain))

    def test_unknown_follow_up_service_is_synthesized(self) -> None:
        item = PricingItem.from_dict(
            {
                "id": "p-x",
                "serviceId": "svc-color",
                "hasFollowUp": True,
                "followUp": {"name": "שטיפה", "durationMinutes": 10},
            }
        )
        chain = build_chain_for_selection(["p-x"], SERVICES, [item])
        self.assertEqual(chain[1].service.name, "שטיפה")
        self.assertEqual(chain[1].service.id, "שטיפה")

    def test_unknown_pricing_item(self) -> None:
        with self.assertRaises(ValueError):
            build_chain_for_selection(["missing"], SERVICES, PRICING)
        with self.assertRaises(ValueError):
            build_chain_for_selection([], SERVICES, PRICING)


class MultiSelectionTests(unittest.TestCase):
    def test_follow_ups_are_appended_once_at_the_end(self) -> None:
        chain = build_chain_for_selection(["p-color-toner", "p-blowdry-toner"], SERVICES, PRICING)
        self.assertEqual(_names(chain), ["גוונים", "פן", "טונר"])
        self.assertEqual(chain[2].gap_minutes, 15)
        self.assertFalse(chain[2].follow_up)

    def test_selection_order_is_kept(self) -> None:
        chain = build_chain_for_selection(["p-blowdry", "p-color"], SERVICES, PRICING)
        self.assertEqual(_names(chain), ["פן", "גוונים"])
        self.assertEqual(get_chain_total_duration(chain), 90)


class ComboTests(unittest.TestCase):
    def _combo(self, combo_id: str = "c1", **overrides) -> MultiBookingCombo:
        payload = {
            "id": combo_id,
            "name": "Color and blowdry",
            "isActive": True,
            "triggerServiceTypeIds": ["p-color", "p-blowdry"],
            "orderedServiceTypeIds": ["p-blowdry", "p-color"],
            "autoSteps": [{"serviceId": "svc-toner", "durationMinutesOverride": 10, "position": "end"}],
            "updatedAt": "2030-01-01T10:00:00",
        }
        payload.update(overrides)
        return MultiBookingCombo.from_dict(payload)

    def test_combo_order_and_auto_step(self) -> None:
        chain = build_chain_for_selection(["p-color", "p-blowdry"], SERVICES, PRICING, [self._combo()])
        self.assertEqual(_names(chain), ["פן", "גוונים", "טונר"])
        self.assertEqual(chain[2].duration_minutes, 10)
        self.assertEqual(chain[2].pricing_item.id, "auto-c1-svc-toner")

    def test_auto_step_inserted_by_position(self) -> None:
        combo = self._combo(autoSteps=[{"serviceId": "svc-toner", "durationMinutesOverride": 10, "position": 1}])
        chain = build_chain_for_selection(["p-color", "p-blowdry"], SERVICES, PRICING, [combo])
        self.assertEqual(_names(chain), ["פן", "טונר", "גוונים"])

    def test_set_equality_is_required(self) -> None:
        combos = [self._combo()]
        self.assertIsNone(find_matching_combo(combos, ["p-color"]))
        self.assertIsNone(find_matching_combo(combos, ["p-color", "p-blowdry", "p-color-toner"]))
        self.assertIsNotNone(find_matching_combo(combos, ["p-blowdry", "p-color"]))

    def test_inactive_and_invalid_combos_are_skipped(self) -> None:
        inactive = self._combo(isActive=False)
        broken = self._combo("c2", orderedServiceTypeIds=["p-blowdry"])
        self.assertIsNone(find_matching_combo([inactive, broken], ["p-color", "p-blowdry"]))
        self.assertEqual(validate_combo(broken), (False, "orderedServiceTypeIds must contain every triggerServiceTypeId"))

    def test_newest_combo_wins_a_tie(self) -> None:
        older = self._combo("old", updatedAt="2030-01-01T10:00:00")
        newer = self._combo("new", updatedAt="2030-01-02T10:00:00")
        self.assertEqual(find_matching_combo([older, newer], ["p-color", "p-blowdry"]).id, "new")

    def test_unknown_auto_step_service(self) -> None:
        combo = self._combo(autoSteps=[{"serviceId": "svc-missing", "durationMinutesOverride": 10}])
        with self.assertRaises(ValueError):
            build_chain_for_selection(["p-color", "p-blowdry"], SERVICES, PRICING, [combo])


class PhaseTimingTests(unittest.TestCase):
    def test_phases_are_laid_out_back_to_back(self) -> None:
        chain = build_chain_for_selection(["p-color-toner"], SERVICES, PRICING)
        phases = compute_chain_phases(chain, 600)
        self.assertEqual([(p.start_min, p.end_min) for p in phases], [(600, 660), (675, 695)])
        self.assertTrue(phases[1].follow_up)
        self.assertEqual(phases[1].gap, 15)

    def test_single_entry_chain_is_expanded_for_timing(self) -> None:
        chain = build_chain_for_selection(["p-color-toner"], SERVICES, PRICING)[:1]
        self.assertEqual(len(compute_chain_phases(chain, 540)), 2)
        self.assertEqual(datetime.timedelta(minutes=get_chain_total_duration(chain)), datetime.timedelta(minutes=95))


if __name__ == "__main__":
    unittest.main()
