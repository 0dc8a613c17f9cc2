"""Final/superseded resolution of choice fields."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

from .schema import ChoiceOption

__all__ = ["OptionStatus", "ChoiceResolution", "decide_choice"]


class OptionStatus(str, Enum):
    ACTIVE = "active"
    ALTERNATIVE = "alternative"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class ChoiceResolution:
    """Per-option status of one choice field.

    ``resolved`` is set once a final option is complete. From then on every
    non-final option is superseded: its stored values are kept but it no longer
    takes part in requirement checks and is shown read-only.
    """

    statuses: Dict[str, OptionStatus] = field(default_factory=dict)
    active_option_id: Optional[str] = None
    resolved: bool = False
    has_data: Dict[str, bool] = field(default_factory=dict)
    complete: Dict[str, bool] = field(default_factory=dict)

    def status_of(self, option_id: str) -> OptionStatus:
        return self.statuses.get(option_id, OptionStatus.ALTERNATIVE)

    def is_superseded(self, option_id: str) -> bool:
        return self.status_of(option_id) is OptionStatus.SUPERSEDED

    @property
    def any_data(self) -> bool:
        return any(self.has_data.values())

    @property
    def any_complete(self) -> bool:
        return any(self.complete.values())


def decide_choice(
    options: Sequence[ChoiceOption],
    has_data: Mapping[str, bool],
    complete: Mapping[str, bool],
) -> ChoiceResolution:
    """Pick the active option and mark the rest alternative or superseded.

    A complete final option wins (first in schema order). Otherwise the first
    option holding any data is active, falling back to the first declared one.
    """

    if not options:
        return ChoiceResolution()

    finals_complete = [o for o in options if o.is_final and complete.get(o.id, False)]
    statuses: Dict[str, OptionStatus] = {}

    if finals_complete:
        active = finals_complete[0]
        for option in options:
            if option.id == active.id:
                statuses[option.id] = OptionStatus.ACTIVE
            elif option.is_final:
                statuses[option.id] = OptionStatus.ALTERNATIVE
            else:
                statuses[option.id] = OptionStatus.SUPERSEDED
    else:
        active = next((o for o in options if has_data.get(o.id, False)), options[0])
        for option in options:
            statuses[option.id] = (
                OptionStatus.ACTIVE if option.id == active.id else OptionStatus.ALTERNATIVE
            )

    return ChoiceResolution(
        statuses=statuses,
        active_option_id=active.id,
        resolved=bool(finals_complete),
        has_data={o.id: bool(has_data.get(o.id, False)) for o in options},
        complete={o.id: bool(complete.get(o.id, False)) for o in options},
    )
