# File: race_result.py
"""
Final standings for a race.

The timer reports a time and a place token per lane. :func:`interpret_results`
turns those raw values into final places: lanes are ordered by time (no time
sorts last), equal times are ordered by the reported place token, and places
are assigned with optional offsetting for ties. In eliminator mode lanes race
head to head in pairs (A/B, C/D, E/F) and each pair is placed separately.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from k1_responses import RawRaceResults
from k1_types import FinishingPlace, Lane, MAX_LANES


ELIMINATOR_GROUP_SIZE = 2


@dataclass(frozen=True)
class LaneResult:
    """Place and time for one lane."""
    place: FinishingPlace
    time: float
    was_masked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'place': int(self.place),
            'time': self.time,
            'wasMasked': self.was_masked,
        }


@dataclass(frozen=True)
class RaceResult:
    """Interpreted results of one race, lanes A..F in order."""
    lane_results: Tuple[LaneResult, ...]
    offset_results_for_ties: bool
    use_eliminator_mode: bool

    @classmethod
    def from_raw(
        cls,
        raw: RawRaceResults,
        lane_mask: Sequence[bool],
        offset_results_for_ties: bool,
        use_eliminator_mode: bool
    ) -> 'RaceResult':
        lane_results = interpret_results(
            raw.places, raw.times, lane_mask, offset_results_for_ties, use_eliminator_mode
        )
        return cls(lane_results, offset_results_for_ties, use_eliminator_mode)

    def lane(self, lane: Lane) -> LaneResult:
        return self.lane_results[Lane(lane)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'laneResults': [result.to_dict() for result in self.lane_results],
            'offsetResultsForTies': self.offset_results_for_ties,
            'useEliminatorMode': self.use_eliminator_mode,
        }


def _sorts_after(candidate: Tuple[FinishingPlace, float], placed: Tuple[FinishingPlace, float]) -> bool:
    """True if ``candidate`` belongs after ``placed`` in finishing order."""
    place, time = candidate
    placed_place, placed_time = placed
    return (
        time == 0
        or (time > placed_time and placed_time != 0)
        or (time == placed_time and place >= placed_place)
    )


def order_group(entries: Sequence[Tuple[FinishingPlace, float]], lanes: Sequence[int]) -> List[int]:
    """
    Order lanes fastest first with a stable insertion sort.

    Args:
        entries: (raw place, time) per lane
        lanes: Lane indices making up the group

    Returns:
        Lane indices in finishing order
    """
    order: List[int] = []
    for lane in lanes:
        rank = 0
        while rank < len(order) and _sorts_after(entries[lane], entries[order[rank]]):
            rank += 1
        order.insert(rank, lane)
    return order


def assign_places(
    entries: Sequence[Tuple[FinishingPlace, float]],
    order: Sequence[int],
    offset_results_for_ties: bool
) -> Dict[int, FinishingPlace]:
    """Assign final places to lanes already in finishing order."""
    if not order:
        return {}

    fastest = order[0]
    if entries[fastest][1] <= 0:
        return {lane: FinishingPlace.NO_PLACE for lane in order}

    places = {fastest: FinishingPlace.FIRST}
    next_place = FinishingPlace.FIRST + 1

    for previous, current in zip(order, order[1:]):
        previous_place, previous_time = entries[previous]
        current_place, current_time = entries[current]

        if current_time <= 0:
            places[current] = FinishingPlace.NO_PLACE
        elif current_time > previous_time or current_place > previous_place:
            places[current] = FinishingPlace(min(next_place, FinishingPlace.NO_PLACE))
            next_place += 1
        else:
            # Tie with the previous lane
            places[current] = places[previous]
            if offset_results_for_ties:
                next_place += 1

    return places


def interpret_results(
    places: Sequence[FinishingPlace],
    times: Sequence[float],
    lane_mask: Sequence[bool],
    offset_results_for_ties: bool,
    use_eliminator_mode: bool
) -> Tuple[LaneResult, ...]:
    """
    Compute final lane results from raw timer values.

    Args:
        places: Raw place per lane, decoded from the results tokens
        times: Raw time per lane in seconds, 0 when the lane did not finish
        lane_mask: Lanes configured as masked for this race; lanes past the
            end of a shorter sequence count as unmasked
        offset_results_for_ties: Tied lanes use up the places after them
        use_eliminator_mode: Place lanes in pairs instead of all together

    Returns:
        Six LaneResult values, lanes A..F
    """
    entries = [
        (FinishingPlace(places[index]), float(times[index]))
        for index in range(MAX_LANES)
    ]

    masked = [
        index < len(lane_mask)
        and bool(lane_mask[index])
        and not (entries[index][0] != FinishingPlace.NO_PLACE or entries[index][1] > 0)
        for index in range(MAX_LANES)
    ]

    group_size = ELIMINATOR_GROUP_SIZE if use_eliminator_mode else MAX_LANES
    final_places: Dict[int, FinishingPlace] = {}
    for start in range(0, MAX_LANES, group_size):
        lanes = range(start, min(start + group_size, MAX_LANES))
        order = order_group(entries, lanes)
        final_places.update(assign_places(entries, order, offset_results_for_ties))

    return tuple(
        LaneResult(final_places[index], entries[index][1], masked[index])
        for index in range(MAX_LANES)
    )
