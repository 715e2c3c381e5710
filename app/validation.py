from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

from capability import can_worker_perform_service
from models import ResolvedFollowUp, ResolvedPhase, ServiceKey, Worker


def validate_chain_assignments(phases: Sequence[ResolvedPhase], workers: Sequence[Worker]) -> Dict[str, Any]:
    """Return capability findings for a resolved chain about to be written.

    Pure check: every main phase and follow-up must have an assigned worker
    who exists in ``workers`` and can currently perform the service. Timing
    and conflicts are not re-checked here.
    """
    roster = {worker.id: worker for worker in workers}
    issues: List[Dict[str, Any]] = []
    if not phases:
        issues.append({"type": "empty_chain", "severity": "error", "phase": 0, "message": "No phases to book."})
    for index, phase in enumerate(phases):
        service_name = (phase.service_name or "").strip()
        if not service_name:
            issues.append(
                {
                    "type": "missing_service",
                    "severity": "error",
                    "phase": index + 1,
                    "message": f"Phase {index + 1}: missing service name",
                }
            )
            continue
        issue = _assignment_issue(phase, roster, f"Phase {index + 1} ({service_name})", index)
        if issue:
            issues.append(issue)
        follow_up = phase.follow_up
        if follow_up is not None and follow_up.duration_min >= 1 and (follow_up.service_name or "").strip():
            label = f"Phase {index + 1} follow-up ({follow_up.service_name.strip()})"
            issue = _assignment_issue(follow_up, roster, label, index)
            if issue:
                issue["follow_up"] = True
                issues.append(issue)
    errors = [issue["message"] for issue in issues]
    return {
        "valid": not errors,
        "errors": errors,
        "issues": issues,
        "checks": _build_validation_checklist(issues),
    }


def _assignment_issue(
    item: Union[ResolvedPhase, ResolvedFollowUp],
    roster: Dict[str, Worker],
    label: str,
    index: int,
) -> Optional[Dict[str, Any]]:
    if not item.worker_id:
        return {
            "type": "assignment",
            "severity": "error",
            "phase": index + 1,
            "message": f"{label}: no worker assigned",
        }
    worker = roster.get(item.worker_id)
    if worker is None:
        return {
            "type": "assignment",
            "severity": "error",
            "phase": index + 1,
            "worker_id": item.worker_id,
            "message": f"{label}: assigned worker not found",
        }
    service_name = item.service_name.strip()
    key = ServiceKey(id=(item.service_id or "").strip() or None, name=service_name)
    if not can_worker_perform_service(worker, key):
        return {
            "type": "capability",
            "severity": "error",
            "phase": index + 1,
            "worker_id": worker.id,
            "message": f'{label}: worker "{worker.name or item.worker_id}" cannot perform this service',
        }
    return None


def _build_validation_checklist(issues: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    checks: List[Dict[str, Any]] = []

    def add_check(label: str, type_names: Sequence[str]) -> None:
        matches = [issue for issue in issues if issue.get("type") in type_names]
        checks.append(
            {
                "label": label,
                "status": "fail" if matches else "ok",
                "details": "; ".join(issue["message"] for issue in matches[:5]),
            }
        )

    add_check("Chain has phases?", ("empty_chain",))
    add_check("Every phase names a service?", ("missing_service",))
    add_check("Every phase has a known worker?", ("assignment",))
    add_check("Every worker can perform their phase?", ("capability",))
    return checks
