"""Timeline Builder

Fits a list of visual assets into the voiceover duration. Every allocation
produces a gapless slot sequence that starts at 0 and ends exactly at the
target duration, and flags the assets that must be looped or trimmed at
render time to fill their slot.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence
import logging

from .video_models import TimelineAsset, TimelineSlot, TimingPreview
from ..utils.errors import InvariantViolation


logger = logging.getLogger(__name__)

MIN_SLOT_SECONDS = 1.0
LOOP_TRIM_EPSILON = 0.05
MIN_SPLIT_MARGIN = 0.5


def _even_durations(total: float, count: int, min_slot: float) -> List[float]:
    per_slot = math.ceil(total / count)
    last = total - per_slot * (count - 1)
    if count > 1 and (last < min_slot or last <= 0):
        # ceil overshoots when slots are short; split exactly instead
        per_slot = total / count
        last = total - per_slot * (count - 1)
    return [per_slot] * (count - 1) + [last]


def _flags(native: Optional[float], target: float, epsilon: float):
    if native is None:
        return False, False
    return native < target - epsilon, native > target + epsilon


def allocate_timeline(
    assets: Sequence[TimelineAsset],
    total_duration: float,
    durations: Optional[Sequence[float]] = None,
    min_slot_duration: float = MIN_SLOT_SECONDS,
    epsilon: float = LOOP_TRIM_EPSILON,
) -> List[TimelineSlot]:
    """Place ``assets`` back to back so the timeline covers ``total_duration`` exactly.

    Without ``durations`` the time is split evenly: every slot but the last
    gets ``ceil(total / count)`` and the last takes the remainder. With
    ``durations`` (one per asset, e.g. from a timeline editor) only the
    offsets and loop/trim flags are computed, and the last slot is stretched
    or cut so it ends at ``total_duration``.
    """
    if not assets:
        raise InvariantViolation("Cannot build a timeline without assets")
    if total_duration <= 0:
        raise InvariantViolation(f"Target duration must be positive, got {total_duration}")

    count = len(assets)
    if durations is None:
        slot_durations = _even_durations(total_duration, count, min_slot_duration)
    else:
        if len(durations) != count:
            raise InvariantViolation(f"Got {len(durations)} durations for {count} assets")
        if any(d <= 0 for d in durations):
            raise InvariantViolation("Manual slot durations must be positive")
        slot_durations = list(durations)

    # offsets from prefix sums, not a running total
    starts = [math.fsum(slot_durations[:i]) for i in range(count)]
    if starts[-1] >= total_duration:
        raise InvariantViolation(
            f"Slots before the last already fill {starts[-1]:.2f}s of {total_duration:.2f}s"
        )
    ends = starts[1:] + [total_duration]
    slot_durations = [end - start for start, end in zip(starts, ends)]

    slots = []
    for asset, start, end, target in zip(assets, starts, ends, slot_durations):
        needs_loop, needs_trim = _flags(asset.native_duration, target, epsilon)
        slots.append(TimelineSlot(
            asset_ref=asset.id,
            target_duration=target,
            start_offset=start,
            end_offset=end,
            native_duration=asset.native_duration,
            needs_loop=needs_loop,
            needs_trim=needs_trim,
        ))

    logger.debug(f"Allocated {count} slots over {total_duration:.2f}s")
    return slots


def assets_from_slots(slots: Sequence[TimelineSlot]) -> List[TimelineAsset]:
    return [TimelineAsset(id=s.asset_ref, native_duration=s.native_duration) for s in slots]


def _total(slots: Sequence[TimelineSlot]) -> float:
    if not slots:
        raise InvariantViolation("Timeline is empty")
    return slots[-1].end_offset


def redistribute_from(
    slots: Sequence[TimelineSlot],
    index: int,
    total_duration: float,
    min_slot_duration: float = MIN_SLOT_SECONDS,
    epsilon: float = LOOP_TRIM_EPSILON,
) -> List[TimelineSlot]:
    """Keep slots before ``index`` and spread the remaining time evenly over the rest."""
    if not 0 <= index < len(slots):
        raise IndexError(f"Slot index {index} out of range")

    kept = [s.target_duration for s in slots[:index]]
    remaining = total_duration - math.fsum(kept)
    if remaining <= 0:
        raise InvariantViolation(f"Slots before {index} already fill {total_duration:.2f}s")
    durations = kept + _even_durations(remaining, len(slots) - index, min_slot_duration)

    return allocate_timeline(assets_from_slots(slots), total_duration, durations, min_slot_duration, epsilon)


def snap_to_audio_length(
    slots: Sequence[TimelineSlot],
    total_duration: float,
    epsilon: float = LOOP_TRIM_EPSILON,
) -> List[TimelineSlot]:
    """Stretch or shrink the last slot so the timeline ends with the voiceover."""
    durations = [s.target_duration for s in slots]
    return allocate_timeline(assets_from_slots(slots), total_duration, durations, epsilon=epsilon)


def split_slot(
    slots: Sequence[TimelineSlot],
    index: int,
    at_seconds: float,
    epsilon: float = LOOP_TRIM_EPSILON,
) -> List[TimelineSlot]:
    """Split slot ``index`` in two, ``at_seconds`` into the slot; both halves show the same asset."""
    if not 0 <= index < len(slots):
        raise IndexError(f"Slot index {index} out of range")

    slot = slots[index]
    if at_seconds <= MIN_SPLIT_MARGIN or at_seconds >= slot.target_duration - MIN_SPLIT_MARGIN:
        raise InvariantViolation(
            f"Split point {at_seconds:.2f}s is too close to the edge of a {slot.target_duration:.2f}s slot"
        )

    assets = assets_from_slots(slots)
    durations = [s.target_duration for s in slots]
    assets.insert(index + 1, assets[index])
    durations[index:index + 1] = [at_seconds, slot.target_duration - at_seconds]

    return allocate_timeline(assets, _total(slots), durations, epsilon=epsilon)


def duplicate_slot(slots: Sequence[TimelineSlot], index: int, **kwargs) -> List[TimelineSlot]:
    """Insert a copy of slot ``index`` after it and re-allocate the whole timeline."""
    if not 0 <= index < len(slots):
        raise IndexError(f"Slot index {index} out of range")
    assets = assets_from_slots(slots)
    assets.insert(index + 1, assets[index])
    return allocate_timeline(assets, _total(slots), **kwargs)


def remove_slot(slots: Sequence[TimelineSlot], index: int, **kwargs) -> List[TimelineSlot]:
    if len(slots) <= 1:
        raise InvariantViolation("Cannot remove the only slot of a timeline")
    if not 0 <= index < len(slots):
        raise IndexError(f"Slot index {index} out of range")
    assets = assets_from_slots(slots)
    del assets[index]
    return allocate_timeline(assets, _total(slots), **kwargs)


def move_slot(slots: Sequence[TimelineSlot], from_index: int, to_index: int, **kwargs) -> List[TimelineSlot]:
    """Reorder an asset; the timeline is recomputed from scratch afterwards."""
    assets = assets_from_slots(slots)
    asset = assets.pop(from_index)
    assets.insert(to_index, asset)
    return allocate_timeline(assets, _total(slots), **kwargs)


def timing_preview(slots: Sequence[TimelineSlot]) -> TimingPreview:
    total = _total(slots)
    return TimingPreview(
        total_duration=total,
        slot_count=len(slots),
        average_duration=total / len(slots),
        loop_count=sum(1 for s in slots if s.needs_loop),
        trim_count=sum(1 for s in slots if s.needs_trim),
    )
