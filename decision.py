"""
Decide whether an update to the watched resource carries a significant change.

Objects are handled as plain JSON trees (dicts, lists and scalars as produced
by the json module). Volatile bookkeeping fields are stripped from both sides
and the ``metadata``, ``spec`` and ``status`` sections are compared
structurally. Updates that change none of them are denied with a successful
status so that no new revision is written to the cluster.
"""

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from typing_extensions import Protocol

from exc import ObjectParseError
from metrics import WebhookMetrics
from models import AdmissionRequest, AdmissionResponse, Operation, Status

LOG = logging.getLogger(__name__)

SECTIONS = ("metadata", "spec", "status")

# (section, key) pairs that never count as a change
VOLATILE_FIELDS = (
    ("metadata", "managedFields"),
    ("metadata", "generation"),
    ("status", "reconciledAt"),
)

_ABSENT = object()


@dataclass
class SectionDiff:
    added: dict[str, Any] = field(default_factory=dict)
    removed: dict[str, Any] = field(default_factory=dict)
    changed: dict[str, tuple[Any, Any]] = field(default_factory=dict)
    replaced: bool = False


class DiffSink(Protocol):
    def __call__(self, section: str, diff: SectionDiff) -> None: ...


def log_section_diff(section: str, diff: SectionDiff) -> None:
    """Default diff sink: describe a changed section at debug level."""

    if not LOG.isEnabledFor(logging.DEBUG):
        return

    LOG.debug("----- %s differences -----", section.capitalize())
    if diff.replaced:
        LOG.debug("Section %s replaced", section)
    for key, (old, new) in diff.changed.items():
        LOG.debug("Key: %s old value: %r new value: %r", key, old, new)
    for key, old in diff.removed.items():
        LOG.debug("Key removed: %s (old value: %r)", key, old)
    for key, new in diff.added.items():
        LOG.debug("Key added: %s (new value: %r)", key, new)


def parse_object(raw: Any, which: str) -> dict[str, Any]:
    """Turn an embedded or JSON-encoded object into a tree rooted at a mapping."""

    if raw is None:
        raise ObjectParseError(f"failed to parse {which} object: missing")

    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except (ValueError, RecursionError) as err:
            LOG.warning("failed to decode %s object: %s", which, err)
            raise ObjectParseError(f"failed to parse {which} object")

    if not isinstance(raw, Mapping):
        raise ObjectParseError(
            f"failed to parse {which} object: expected a mapping, "
            f"got {type(raw).__name__}"
        )

    return dict(raw)


def normalize(obj: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of obj without its volatile fields.

    Only the sections that lose a key are copied; the input is never modified.
    """

    result = dict(obj)
    for section, key in VOLATILE_FIELDS:
        value = result.get(section)
        if isinstance(value, Mapping) and key in value:
            value = dict(value)
            del value[key]
            result[section] = value

    return result


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality for JSON trees.

    Mappings ignore key order, lists are order sensitive. Numbers compare by
    exact value, so 5 == 5.0 but integers beyond float precision stay
    distinct. Booleans only ever equal booleans.
    """

    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[key], b[key]) for key in a)

    if isinstance(a, list) and isinstance(b, list):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if type(a) is not type(b):
        return False

    return a == b


def diff_section(old: Any, new: Any) -> SectionDiff:
    diff = SectionDiff()

    if old is _ABSENT:
        old = {}
    if new is _ABSENT:
        new = {}

    if not (isinstance(old, Mapping) and isinstance(new, Mapping)):
        diff.replaced = True
        return diff

    for key, old_value in old.items():
        if key not in new:
            diff.removed[key] = old_value
        elif not deep_equal(old_value, new[key]):
            diff.changed[key] = (old_value, new[key])

    for key, new_value in new.items():
        if key not in old:
            diff.added[key] = new_value

    return diff


def changed_sections(old: Mapping[str, Any], new: Mapping[str, Any]) -> list[str]:
    """Names of the tracked sections that differ between two normalized trees."""

    return [
        section
        for section in SECTIONS
        if not deep_equal(old.get(section, _ABSENT), new.get(section, _ABSENT))
    ]


class DecisionEngine:
    def __init__(
        self,
        watched_kind: str,
        metrics: WebhookMetrics,
        diff_sink: DiffSink | None = None,
    ):
        self.watched_kind = watched_kind
        self.metrics = metrics
        self.diff_sink = diff_sink if diff_sink is not None else log_section_diff

    def is_watched(self, request: AdmissionRequest) -> bool:
        return (
            request.operation == Operation.UPDATE
            and request.kind is not None
            and request.kind.kind == self.watched_kind
        )

    def decide(self, request: AdmissionRequest) -> AdmissionResponse:
        response = AdmissionResponse(uid=request.uid, allowed=True)

        # Only updates of the watched kind are inspected
        if not self.is_watched(request):
            return response

        start = time.perf_counter()

        old = normalize(parse_object(request.oldObject, "old"))
        new = normalize(parse_object(request.object, "new"))

        try:
            changed = changed_sections(old, new)
            diffs = [
                (
                    section,
                    diff_section(old.get(section, _ABSENT), new.get(section, _ABSENT)),
                )
                for section in changed
            ]
        except RecursionError:
            raise ObjectParseError("failed to compare objects: nesting too deep")

        if changed:
            for section, diff in diffs:
                self.diff_sink(section, diff)
        else:
            LOG.debug("no significant differences found for %s", request.uid)
            response.allowed = False
            response.status = Status(
                status="Success", message="Update successful.", code=200
            )

        self.metrics.record(bool(changed), time.perf_counter() - start)

        return response
