# File: k1_responses.py
"""
Response shapes recognised on the K1 serial line.

Every response the matcher watches for is a :class:`SerialResponse`: a
grammar for the complete response, a grammar for a response that is still
arriving, and the parsed payload once a complete response is delivered.
Commands (see ``k1_commands``) are one-shot responses; the two unsolicited
notifications defined here stay registered for the life of the session.

Example:
    >>> results = RaceResultsResponse()
    >>> results.set_response_data(
    ...     'A=2.345! B=2.346" C=0.000  D=0.000  E=0.000  F=0.000  \\r\\n')
    True
    >>> results.places[0]
    <FinishingPlace.FIRST: 1>
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from k1_types import FinishingPlace, Lane, MAX_LANES


# Place tokens trailing each lane time in a results line
PLACE_TOKENS = {
    ' ': FinishingPlace.NO_PLACE,
    '!': FinishingPlace.FIRST,
    '"': FinishingPlace.SECOND,
    '#': FinishingPlace.THIRD,
    '$': FinishingPlace.FOURTH,
    '%': FinishingPlace.FIFTH,
    '&': FinishingPlace.SIXTH,
}
_TOKENS_BY_PLACE = {place: token for token, place in PLACE_TOKENS.items()}

RACE_CLEARED_TOKEN = '@'

_TOKEN_CLASS = r'[ !"#$%&]'
_LANE_DONE = r'[A-E]=[0-9]\.[0-9]{3}' + _TOKEN_CLASS + ' '
_LANE_ANY = r'[A-F]=[0-9]\.[0-9]{3}' + _TOKEN_CLASS + ' '

RESULTS_PATTERN = ''.join(
    lane.letter + r'=([0-9]\.[0-9]{3})(' + _TOKEN_CLASS + ') ' for lane in Lane
) + r'\r\n'

RESULTS_PARTIAL_PATTERN = '|'.join([
    '(?:' + _LANE_DONE + '){0,5}[A-F]=?',
    '(?:' + _LANE_DONE + r'){0,5}[A-F]=[0-9]\.?',
    '(?:' + _LANE_DONE + r'){0,5}[A-F]=[0-9]\.[0-9]{0,3}',
    '(?:' + _LANE_DONE + r'){0,5}[A-F]=[0-9]\.[0-9]{3}' + _TOKEN_CLASS,
    '(?:' + _LANE_ANY + r'){1,6}\r?',
])


logger = logging.getLogger(__name__)


def token_to_place(token: str) -> FinishingPlace:
    """Map a results place token to a place; unknown tokens mean no place."""
    return PLACE_TOKENS.get(token, FinishingPlace.NO_PLACE)


def place_to_token(place: FinishingPlace) -> str:
    return _TOKENS_BY_PLACE.get(FinishingPlace(place), ' ')


class SerialResponse:
    """
    Base class for anything the response matcher can recognise.

    Subclasses supply the two grammars and override ``_parse`` and
    ``_clear`` to fill and reset their payload fields.
    """

    def __init__(
        self,
        response_pattern: str,
        partial_response_pattern: str,
        expires_on_use: bool
    ):
        self._expires_on_use = expires_on_use
        self._is_response_set = False
        self._set_patterns(response_pattern, partial_response_pattern)

    def _set_patterns(self, response_pattern: str, partial_response_pattern: str) -> None:
        """Replace both grammars and drop any payload parsed under the old ones."""
        self._response_pattern = response_pattern
        self._partial_response_pattern = partial_response_pattern
        self._complete_regex = re.compile(response_pattern)
        self._partial_regex = re.compile(f'(?:{partial_response_pattern})\\Z')
        self.reset_response_data()

    @property
    def response_pattern(self) -> str:
        return self._response_pattern

    @property
    def partial_response_pattern(self) -> str:
        return self._partial_response_pattern

    @property
    def expires_on_use(self) -> bool:
        """True when the matcher should drop this entry after one match."""
        return self._expires_on_use

    @property
    def is_response_set(self) -> bool:
        return self._is_response_set

    def match_complete(self, buffer: str) -> Optional['re.Match']:
        """Find the first complete response anywhere in ``buffer``."""
        return self._complete_regex.search(buffer)

    def match_partial(self, buffer: str) -> Optional['re.Match']:
        """Find the earliest partial response running to the end of ``buffer``."""
        return self._partial_regex.search(buffer)

    def set_response_data(self, response: str) -> bool:
        """
        Parse a complete response into this object's payload.

        Args:
            response: Text previously matched by ``match_complete``

        Returns:
            True if the text is a whole response of this shape
        """
        self.reset_response_data()
        match = self._complete_regex.fullmatch(response)
        if match is None:
            return False

        self._is_response_set = True
        self._parse(match)
        return True

    def reset_response_data(self) -> None:
        """Restore every payload field to its default."""
        self._is_response_set = False
        self._clear()

    def _parse(self, match: 're.Match') -> None:
        pass

    def _clear(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(pattern={self._response_pattern!r})"


class NotifyingResponse(SerialResponse):
    """Persistent response that calls listeners each time it is delivered.

    Listeners run on the reader thread while the matcher lock is held, so
    they must hand work off rather than issue commands.
    """

    def __init__(self, response_pattern: str, partial_response_pattern: str):
        self._listeners: List[Callable] = []
        super().__init__(response_pattern, partial_response_pattern, expires_on_use=False)

    def add_listener(self, listener: Callable) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, *args) -> None:
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception as ex:
                logger.error(f"{self.__class__.__name__} listener failed: {ex}")


class RaceClearedResponse(NotifyingResponse):
    """The single ``@`` the timer sends after its reset switch closes."""

    def __init__(self):
        super().__init__(re.escape(RACE_CLEARED_TOKEN), re.escape(RACE_CLEARED_TOKEN))

    def set_response_data(self, response: str) -> bool:
        if not super().set_response_data(response):
            return False
        self._notify()
        return True


@dataclass(frozen=True)
class RawRaceResults:
    """Places and times exactly as a results line reported them."""
    places: Tuple[FinishingPlace, ...]
    times: Tuple[float, ...]

    def to_wire(self) -> str:
        """Rebuild the results line these values were parsed from."""
        groups = [
            f"{Lane(index).letter}={self.times[index]:.3f}{place_to_token(self.places[index])} "
            for index in range(MAX_LANES)
        ]
        return ''.join(groups) + '\r\n'


class RaceResultsResponse(NotifyingResponse):
    """Unsolicited results line sent when every lane has finished or timed out."""

    def __init__(self):
        self._places = [FinishingPlace.NO_PLACE] * MAX_LANES
        self._times = [0.0] * MAX_LANES
        super().__init__(RESULTS_PATTERN, RESULTS_PARTIAL_PATTERN)

    @property
    def places(self) -> Tuple[FinishingPlace, ...]:
        return tuple(self._places)

    @property
    def times(self) -> Tuple[float, ...]:
        return tuple(self._times)

    def snapshot(self) -> RawRaceResults:
        return RawRaceResults(places=self.places, times=self.times)

    def _parse(self, match: 're.Match') -> None:
        for index in range(MAX_LANES):
            self._times[index] = float(match.group(2 * index + 1))
            self._places[index] = token_to_place(match.group(2 * index + 2))

    def _clear(self) -> None:
        self._places = [FinishingPlace.NO_PLACE] * MAX_LANES
        self._times = [0.0] * MAX_LANES

    def set_response_data(self, response: str) -> bool:
        if not super().set_response_data(response):
            return False
        self._notify(self.snapshot())
        return True
