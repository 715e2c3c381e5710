from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Set, Union

from models import ServiceKey, Worker

ServiceLookup = Union[ServiceKey, str, int]


def normalize_service_label(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _field(worker: Union[Worker, Mapping[str, Any]], name: str, default: Any = None) -> Any:
    if isinstance(worker, Mapping):
        return worker.get(name, default)
    return getattr(worker, name, default)


def is_worker_active(worker: Union[Worker, Mapping[str, Any], None]) -> bool:
    """Only an explicit ``active = False`` switches a worker off."""
    if worker is None:
        return False
    return _field(worker, "active", True) is not False


def worker_service_labels(worker: Union[Worker, Mapping[str, Any], None]) -> Set[str]:
    if worker is None:
        return set()
    services = _field(worker, "services") or ()
    if isinstance(services, (str, bytes)):
        services = [services]
    labels: Set[str] = set()
    for entry in services:
        label = normalize_service_label(entry)
        if label:
            labels.add(label)
    return labels


def service_key_candidates(service: ServiceLookup) -> List[str]:
    if isinstance(service, ServiceKey):
        return service.candidates()
    label = normalize_service_label(service)
    return [label] if label else []


def can_worker_perform_service(worker: Union[Worker, Mapping[str, Any], None], service: ServiceLookup) -> bool:
    """Return True if the worker lists the service by id or by name.

    Matching is exact after trimming (case-sensitive). An empty or missing
    ``services`` list grants nothing, and an inactive worker is never capable.
    """
    if not is_worker_active(worker):
        return False
    labels = worker_service_labels(worker)
    if not labels:
        return False
    return any(candidate in labels for candidate in service_key_candidates(service))


def workers_who_can_perform_service(workers: Iterable[Worker], service: ServiceLookup) -> List[Worker]:
    """Capable active workers, in roster order."""
    return [worker for worker in workers if can_worker_perform_service(worker, service)]
