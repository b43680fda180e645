"""Translation table between a source site's labels and schedule enums."""

import structlog
from pydantic import BaseModel, Field, field_validator

from transit_snapshot.exceptions import UnknownTransportKind
from transit_snapshot.models.schedule import DayClass, TransportKind

log = structlog.stdlib.get_logger()

DEFAULT_KIND_LABELS: dict[str, TransportKind] = {
    "автобус": TransportKind.BUS,
    "троллейбус": TransportKind.TROLLEYBUS,
    "трамвай": TransportKind.TRAM,
    "bus": TransportKind.BUS,
    "trolleybus": TransportKind.TROLLEYBUS,
    "tram": TransportKind.TRAM,
}

DEFAULT_DAY_LABELS: dict[str, DayClass] = {
    "будни": DayClass.WEEKDAY,
    "выходные": DayClass.WEEKEND,
    "weekday": DayClass.WEEKDAY,
    "weekend": DayClass.WEEKEND,
}


def _fold(label: str) -> str:
    return " ".join(str(label).split()).casefold()


class ScheduleVocabulary(BaseModel):
    """Maps source labels to ``TransportKind`` and ``DayClass``.

    Lookups ignore case and surrounding whitespace.
    """

    kinds: dict[str, TransportKind] = Field(
        default_factory=lambda: dict(DEFAULT_KIND_LABELS),
        description="Source category label -> transport kind",
    )
    days: dict[str, DayClass] = Field(
        default_factory=lambda: dict(DEFAULT_DAY_LABELS),
        description="Source day label -> service-day class",
    )

    @field_validator("kinds", "days")
    @classmethod
    def fold_keys(cls, v: dict) -> dict:
        return {_fold(k): value for k, value in v.items()}

    def kind_for(self, label: str) -> TransportKind:
        """Translate a category label.

        Raises:
            UnknownTransportKind: If the label is not in the table
        """
        kind = self.kinds.get(_fold(label))
        if kind is None:
            log.warning("unknown_transport_kind_label", label=label)
            raise UnknownTransportKind(label)
        return kind

    def day_for(self, label: str) -> DayClass | None:
        """Translate a day label, or None if it is not a service-day class."""
        return self.days.get(_fold(label))
