from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from functools import reduce
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models import (
    ChainServiceInput,
    FollowUp,
    MultiBookingCombo,
    PricingItem,
    Service,
    ServiceKey,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedPhase:
    """One timed chain entry before a worker is attached."""

    index: int
    key: ServiceKey
    service_id: Optional[str]
    service_name: str
    service_type: Optional[str]
    pricing_item_id: Optional[str]
    duration: int
    start_min: int
    end_min: int
    gap: int = 0
    follow_up: bool = False


def _find_service(services: Iterable[Service], service_id: Optional[str], name: str) -> Optional[Service]:
    name = (name or "").strip()
    for service in services:
        if service_id and service.id == service_id:
            return service
    for service in services:
        if name and (service.name or "").strip() == name:
            return service
    return None


def _follow_up_entry(follow_up: FollowUp, services: Sequence[Service], source: PricingItem) -> ChainServiceInput:
    service = _find_service(services, follow_up.service_id, follow_up.name)
    if service is None:
        service = Service(id=follow_up.service_id or follow_up.name, name=follow_up.name)
    pricing = PricingItem(
        id=f"followup-{source.id}",
        service_id=service.id,
        duration_min_minutes=follow_up.duration_minutes,
        duration_max_minutes=follow_up.duration_minutes,
    )
    return ChainServiceInput(
        service=service,
        pricing_item=pricing,
        finish_gap_before=follow_up.wait_minutes,
        follow_up=True,
    )


def build_chain_with_finishing_service(
    chain: Sequence[ChainServiceInput],
    services: Sequence[Service] = (),
    pricing_items: Sequence[PricingItem] = (),
) -> List[ChainServiceInput]:
    """Append the follow-up of a single selected pricing item as a trailing phase.

    Multi-entry chains (combo or already expanded) come back unchanged, which
    also makes the expansion idempotent.
    """
    chain = list(chain)
    if len(chain) != 1:
        return chain
    entry = chain[0]
    follow_up = entry.pricing_item.active_follow_up
    if follow_up is None:
        return chain
    return chain + [_follow_up_entry(follow_up, services, entry.pricing_item)]


def get_chain_total_duration(chain: Sequence[ChainServiceInput]) -> int:
    expanded = build_chain_with_finishing_service(chain)
    return sum(entry.gap_minutes + entry.duration_minutes for entry in expanded)


def validate_combo(combo: MultiBookingCombo) -> Tuple[bool, Optional[str]]:
    trigger = list(combo.trigger_service_type_ids or ())
    ordered = list(combo.ordered_service_type_ids or ())
    if not trigger:
        return False, "triggerServiceTypeIds cannot be empty"
    if not ordered:
        return False, "orderedServiceTypeIds cannot be empty"
    if len(ordered) != len(set(ordered)):
        return False, "orderedServiceTypeIds must not contain duplicates"
    if not set(trigger).issubset(ordered):
        return False, "orderedServiceTypeIds must contain every triggerServiceTypeId"
    for index, step in enumerate(combo.auto_steps or ()):
        if not (step.service_id or "").strip():
            return False, f"autoSteps[{index}]: serviceId is required"
        if step.duration_minutes_override < 1:
            return False, f"autoSteps[{index}]: durationMinutesOverride must be at least 1"
        if step.position != "end" and (not isinstance(step.position, int) or step.position < 0):
            return False, f'autoSteps[{index}]: position must be "end" or a non-negative number'
    return True, None


def find_matching_combo(
    combos: Iterable[MultiBookingCombo],
    selected_type_ids: Optional[Sequence[str]],
) -> Optional[MultiBookingCombo]:
    """Active combo whose trigger set equals the selected pricing item ids.

    Ties prefer the larger trigger set, then the most recently updated combo.
    """
    selected = set(selected_type_ids or ())
    if not selected:
        return None
    matches: List[MultiBookingCombo] = []
    for combo in combos or ():
        if combo is None or not combo.is_active:
            continue
        valid, error = validate_combo(combo)
        if not valid:
            logger.debug("Skipping combo %s: %s", combo.id, error)
            continue
        if set(combo.trigger_service_type_ids) == selected:
            matches.append(combo)
    if not matches:
        return None
    oldest = datetime.datetime.min
    matches.sort(
        key=lambda combo: (
            len(combo.trigger_service_type_ids),
            (combo.updated_at.replace(tzinfo=None) if combo.updated_at else oldest),
        ),
        reverse=True,
    )
    return matches[0]


def _pricing_index(pricing_items: Iterable[PricingItem]) -> Dict[str, PricingItem]:
    return {item.id: item for item in pricing_items}


def _service_for_pricing(item: PricingItem, services: Sequence[Service]) -> Service:
    service = _find_service(services, item.service_id, item.service or "")
    if service is None:
        raise ValueError(f"Pricing item {item.id!r} refers to unknown service {item.service_id!r}.")
    return service


def selection_inputs(
    pricing_item_ids: Sequence[str],
    services: Sequence[Service],
    pricing_items: Sequence[PricingItem],
) -> List[ChainServiceInput]:
    index = _pricing_index(pricing_items)
    inputs: List[ChainServiceInput] = []
    for item_id in pricing_item_ids:
        item = index.get(str(item_id).strip())
        if item is None:
            raise ValueError(f"Unknown pricing item id {item_id!r}.")
        inputs.append(ChainServiceInput(service=_service_for_pricing(item, services), pricing_item=item))
    return inputs


def build_chain_from_combo(
    combo: MultiBookingCombo,
    services: Sequence[Service],
    pricing_items: Sequence[PricingItem],
) -> List[ChainServiceInput]:
    chain = selection_inputs(combo.ordered_service_type_ids, services, pricing_items)
    for step in combo.auto_steps or ():
        service = _find_service(services, step.service_id, "")
        if service is None:
            raise ValueError(f"Combo {combo.id!r} auto step refers to unknown service {step.service_id!r}.")
        pricing = PricingItem(
            id=f"auto-{combo.id}-{service.id}",
            service_id=service.id,
            duration_min_minutes=step.duration_minutes_override,
            duration_max_minutes=step.duration_minutes_override,
        )
        entry = ChainServiceInput(service=service, pricing_item=pricing)
        if step.position == "end":
            chain.append(entry)
        else:
            chain.insert(min(int(step.position), len(chain)), entry)
    return chain


def _follow_up_dedupe_key(follow_up: FollowUp) -> str:
    if follow_up.service_id:
        return follow_up.service_id.strip()
    return follow_up.name.strip().lower()


def _primary_matches_follow_up(service: Service, follow_up: FollowUp) -> bool:
    name = (service.name or "").strip().lower()
    service_id = (service.id or "").strip()
    key = _follow_up_dedupe_key(follow_up)
    if service_id and key == service_id:
        return True
    if name and (key == name or follow_up.name.strip().lower() == name):
        return True
    return False


def build_multi_service_chain(
    selections: Sequence[ChainServiceInput],
    services: Sequence[Service] = (),
    pricing_items: Sequence[PricingItem] = (),
) -> List[ChainServiceInput]:
    """Selected services in order, then each distinct follow-up once at the end."""
    chain = list(selections)
    primaries = [entry.service for entry in chain]
    seen: Dict[str, ChainServiceInput] = {}
    for entry in selections:
        follow_up = entry.pricing_item.active_follow_up
        if follow_up is None:
            continue
        if any(_primary_matches_follow_up(service, follow_up) for service in primaries):
            continue
        key = _follow_up_dedupe_key(follow_up)
        if key in seen:
            continue
        finishing = _follow_up_entry(follow_up, services, entry.pricing_item)
        seen[key] = ChainServiceInput(
            service=finishing.service,
            pricing_item=finishing.pricing_item,
            finish_gap_before=follow_up.wait_minutes,
        )
    return chain + list(seen.values())


def build_chain_for_selection(
    pricing_item_ids: Sequence[str],
    services: Sequence[Service],
    pricing_items: Sequence[PricingItem],
    combos: Sequence[MultiBookingCombo] = (),
) -> List[ChainServiceInput]:
    ids = [str(item_id).strip() for item_id in pricing_item_ids if str(item_id).strip()]
    if not ids:
        raise ValueError("At least one pricing item must be selected.")
    if len(ids) == 1:
        return build_chain_with_finishing_service(selection_inputs(ids, services, pricing_items), services, pricing_items)
    combo = find_matching_combo(combos, ids)
    if combo is not None:
        logger.debug("Selection %s matched combo %s", ids, combo.id)
        return build_chain_from_combo(combo, services, pricing_items)
    return build_multi_service_chain(selection_inputs(ids, services, pricing_items), services, pricing_items)


def _service_key(entry: ChainServiceInput) -> ServiceKey:
    return entry.service.key


def compute_chain_phases(chain: Sequence[ChainServiceInput], start_minute: int) -> List[PlannedPhase]:
    """Lay the chain out from ``start_minute``; each gap precedes its entry."""

    def step(acc: Tuple[int, List[PlannedPhase]], item: Tuple[int, ChainServiceInput]):
        cursor, phases = acc
        index, entry = item
        start = cursor + entry.gap_minutes
        end = start + entry.duration_minutes
        phase = PlannedPhase(
            index=index,
            key=_service_key(entry),
            service_id=entry.service.id or None,
            service_name=(entry.service.name or "").strip(),
            service_type=entry.pricing_item.type,
            pricing_item_id=entry.pricing_item.id or None,
            duration=entry.duration_minutes,
            start_min=start,
            end_min=end,
            gap=entry.gap_minutes,
            follow_up=entry.follow_up,
        )
        return end, phases + [phase]

    expanded = build_chain_with_finishing_service(chain)
    _, phases = reduce(step, enumerate(expanded), (int(start_minute), []))
    return phases
