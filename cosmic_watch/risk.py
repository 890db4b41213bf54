"""Risk scoring for near-Earth objects.

Turns an object's size, closest-approach distance and relative velocity into
an integer danger score between 0 and 100. Feed items (nested NeoWs shape)
and stored records (flattened fields) are first normalized into one
``ApproachMetrics`` record, then scored, so the live feed and the watchlist
always agree on the same object.

Scoring never raises: unusable fields fall back to values that read as
"not dangerous" and are reported through the log and the
``risk_input_malformed_total`` counter.
"""
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from prometheus_client import Counter

logger = logging.getLogger(__name__)

KM_PER_AU = 149_597_870.7
SECONDS_PER_HOUR = 3600.0

DEFAULT_DIAMETER_M = 0.0
DEFAULT_DISTANCE_AU = 100.0
DEFAULT_VELOCITY_KPS = 0.0

SIZE_POINTS = 40.0
FULL_SIZE_M = 1000.0
DISTANCE_POINTS = 40.0
DANGER_DISTANCE_AU = 0.05
SPEED_POINTS = 20.0
FULL_SPEED_KPS = 40.0

HAZARDOUS_SCORE = 50
MODERATE_SCORE = 20

FLAT_FIELDS = (
    "diameter_max_meters",
    "diameter",
    "miss_distance_astronomical",
    "velocity_kps",
)

MALFORMED_INPUTS = Counter(
    "risk_input_malformed_total",
    "Risk score inputs that could not be parsed",
    ["field"],
)


class RiskLevel(str, Enum):
    SAFE = "safe"
    MODERATE = "moderate"
    HAZARDOUS = "hazardous"


@dataclass(frozen=True)
class ApproachMetrics:
    """Canonical scoring input, whatever shape the record arrived in."""

    diameter_meters: float = DEFAULT_DIAMETER_M
    miss_distance_au: float = DEFAULT_DISTANCE_AU
    velocity_kps: float = DEFAULT_VELOCITY_KPS
    malformed: Tuple[str, ...] = ()


def _to_magnitude(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("boolean is not a magnitude")
    number = float(value)
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"unusable magnitude {value!r}")
    return number


def _dig(node: Any, *path: Any) -> Any:
    """Walk nested mappings and lists.

    Returns None when a level is absent and raises TypeError when a level
    exists with the wrong type.
    """
    for key in path:
        if node is None:
            return None
        if isinstance(key, int):
            if not isinstance(node, (list, tuple)):
                raise TypeError(f"expected a list, got {type(node).__name__}")
            if len(node) <= key:
                return None
            node = node[key]
        else:
            if not isinstance(node, Mapping):
                raise TypeError(f"expected a mapping, got {type(node).__name__}")
            node = node.get(key)
    return node


def _lookup(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


class _FieldReader:
    def __init__(self) -> None:
        self.malformed: List[str] = []

    def pick(
        self,
        field: str,
        candidates: Sequence[Tuple[Callable[[], Any], float]],
        default: float,
        required: bool = False,
    ) -> float:
        """Parse the first candidate that is present, scaled to the field's unit.

        A required field with no candidate present counts as malformed too.
        """
        for getter, scale in candidates:
            try:
                raw = getter()
            except TypeError:
                break
            if raw is None:
                continue
            try:
                return _to_magnitude(raw) * scale
            except (TypeError, ValueError):
                break
        else:
            if not required:
                return default
        self.malformed.append(field)
        return default


def _from_feed(item: Mapping, reader: _FieldReader) -> ApproachMetrics:
    # a feed item always carries these nodes, so an absent one is an anomaly
    diameter = reader.pick(
        "diameter_meters",
        [
            (lambda: _dig(item, "estimated_diameter", "meters", "estimated_diameter_max"), 1.0),
            (lambda: _dig(item, "estimated_diameter", "kilometers", "estimated_diameter_max"), 1000.0),
        ],
        DEFAULT_DIAMETER_M,
        required=True,
    )
    distance = reader.pick(
        "miss_distance_au",
        [
            (lambda: _dig(item, "close_approach_data", 0, "miss_distance", "astronomical"), 1.0),
            (lambda: _dig(item, "close_approach_data", 0, "miss_distance", "kilometers"), 1 / KM_PER_AU),
        ],
        DEFAULT_DISTANCE_AU,
        required=True,
    )
    velocity = reader.pick(
        "velocity_kps",
        [
            (lambda: _dig(item, "close_approach_data", 0, "relative_velocity", "kilometers_per_second"), 1.0),
            (lambda: _dig(item, "close_approach_data", 0, "relative_velocity", "kilometers_per_hour"), 1 / SECONDS_PER_HOUR),
        ],
        DEFAULT_VELOCITY_KPS,
        required=True,
    )
    return ApproachMetrics(diameter, distance, velocity)


def _from_flat(record: Any, reader: _FieldReader) -> ApproachMetrics:
    diameter = reader.pick(
        "diameter_meters",
        [
            (lambda: _lookup(record, "diameter_max_meters"), 1.0),
            (lambda: _lookup(record, "diameter"), 1.0),
        ],
        DEFAULT_DIAMETER_M,
    )
    distance = reader.pick(
        "miss_distance_au",
        [(lambda: _lookup(record, "miss_distance_astronomical"), 1.0)],
        DEFAULT_DISTANCE_AU,
    )
    velocity = reader.pick(
        "velocity_kps",
        [(lambda: _lookup(record, "velocity_kps"), 1.0)],
        DEFAULT_VELOCITY_KPS,
    )
    return ApproachMetrics(diameter, distance, velocity)


def _is_feed_item(obj: Any) -> bool:
    return isinstance(obj, Mapping) and (
        "estimated_diameter" in obj or "close_approach_data" in obj
    )


def normalize(obj: Any) -> ApproachMetrics:
    """Reduce a feed item or a stored record to ``ApproachMetrics``."""
    if isinstance(obj, ApproachMetrics):
        return obj

    reader = _FieldReader()
    if _is_feed_item(obj):
        metrics = _from_feed(obj, reader)
    elif isinstance(obj, Mapping) or any(hasattr(obj, f) for f in FLAT_FIELDS):
        metrics = _from_flat(obj, reader)
    else:
        reader.malformed.append("record")
        metrics = ApproachMetrics()

    if not reader.malformed:
        return metrics

    for field in reader.malformed:
        MALFORMED_INPUTS.labels(field=field).inc()
    logger.warning(
        "risk input malformed: fields=%s record_id=%s",
        ",".join(reader.malformed),
        _lookup(obj, "id") if obj is not None else None,
    )
    return ApproachMetrics(
        metrics.diameter_meters,
        metrics.miss_distance_au,
        metrics.velocity_kps,
        tuple(reader.malformed),
    )


def _round_half_up(value: float) -> int:
    # rounds on the shortest decimal form, so 0.49999999999999994 stays 0
    # and 2.5 goes to 3 where round() would give 2
    return int(Decimal(repr(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def score_metrics(metrics: ApproachMetrics) -> int:
    size = min(SIZE_POINTS, metrics.diameter_meters / FULL_SIZE_M * SIZE_POINTS)

    distance = 0.0
    if metrics.miss_distance_au < DANGER_DISTANCE_AU:
        distance = DISTANCE_POINTS * (1 - metrics.miss_distance_au / DANGER_DISTANCE_AU)

    speed = min(SPEED_POINTS, metrics.velocity_kps / FULL_SPEED_KPS * SPEED_POINTS)

    return max(0, min(100, _round_half_up(size + distance + speed)))


def score(obj: Any) -> int:
    """Risk score in [0, 100] for a feed item, stored record or metrics."""
    try:
        return score_metrics(normalize(obj))
    except Exception:
        logger.exception("risk scoring failed, returning 0")
        return 0


def classify(risk_score: int, hazardous: Optional[bool] = False) -> RiskLevel:
    if hazardous or risk_score >= HAZARDOUS_SCORE:
        return RiskLevel.HAZARDOUS
    if risk_score >= MODERATE_SCORE:
        return RiskLevel.MODERATE
    return RiskLevel.SAFE


def is_high_risk(risk_score: int, hazardous: Optional[bool] = False) -> bool:
    return classify(risk_score, hazardous) is RiskLevel.HAZARDOUS


_PARENS = re.compile(r"[()]")


def display_name(name: Optional[str]) -> str:
    """Feed names come decorated, e.g. "(2024 AB1)"; strip the parentheses."""
    return _PARENS.sub("", name or "").strip()
