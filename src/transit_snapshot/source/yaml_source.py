"""Schedule source backed by a YAML dump of the published schedule.

Expected layout::

    marker: "10.02.2024"
    changes:
      kind: Автобус
      routes: ["12", "45"]
    categories:
      - name: Автобус
        routes:
          - number: "12"
            paths:
              - name: Центр - Вокзал
                stations:
                  - name: Центр
                    link: bus-12-centr
                    times:
                      - {day: будни, hour: "06", minutes: "05 25 45"}

Labels are translated through a ``ScheduleVocabulary``. The file is re-read
on every call so that a dump replaced between calls is picked up.
"""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from transit_snapshot.exceptions import SourceError, UnknownTransportKind
from transit_snapshot.models.schedule import (
    ChangedRoutes,
    StationRecord,
    TimeSlotRecord,
    TransportKind,
    normalize_route_number,
)
from transit_snapshot.source.base import ScheduleSource
from transit_snapshot.source.vocabulary import ScheduleVocabulary

log = structlog.stdlib.get_logger()


class YamlScheduleSource(ScheduleSource):
    """Reads the schedule from a local YAML document."""

    def __init__(self, path: str | Path, vocabulary: ScheduleVocabulary | None = None):
        """
        Initialize the source.

        Args:
            path: Path to the YAML dump
            vocabulary: Label translation table; defaults to the built-in labels
        """
        self._path = Path(path)
        self._vocabulary = vocabulary or ScheduleVocabulary()
        log.info("yaml_schedule_source_initialized", path=str(self._path))

    def list_categories(self) -> list[TransportKind]:
        kinds = []
        for category in self._categories():
            kind = self._known_kind(category.get("name", ""))
            if kind is None:
                log.warning("category_skipped", label=category.get("name"), reason="unmapped_label")
            elif kind not in kinds:
                kinds.append(kind)
        log.debug("categories_listed", kinds=[k.value for k in kinds])
        return kinds

    def list_route_numbers(self, kind: TransportKind) -> list[str]:
        return [normalize_route_number(r.get("number", "")) for r in self._routes(kind)]

    def list_routes_for_number(self, kind: TransportKind, number: str) -> list[StationRecord]:
        wanted = normalize_route_number(number)
        stations: list[StationRecord] = []
        for route in self._routes(kind):
            if normalize_route_number(route.get("number", "")) != wanted:
                continue
            for path in route.get("paths") or []:
                for station in path.get("stations") or []:
                    stations.append(
                        self._parse(
                            StationRecord,
                            name=station.get("name"),
                            path=path.get("name", ""),
                            link=station.get("link"),
                        )
                    )
        if not stations:
            log.info("route_not_listed", kind=kind.value, number=wanted)
        return stations

    def list_time_slots(self, link: str) -> list[TimeSlotRecord]:
        for category in self._categories():
            for route in category.get("routes") or []:
                for path in route.get("paths") or []:
                    for station in path.get("stations") or []:
                        if station.get("link") == link:
                            return [self._time_slot(t) for t in station.get("times") or []]
        log.warning("station_link_not_found", link=link)
        return []

    def fetch_latest_marker(self) -> str:
        marker = self._document().get("marker")
        if marker is None or not str(marker).strip():
            raise SourceError(f"No update marker in {self._path}")
        return str(marker).strip()

    def fetch_changed_routes(self) -> ChangedRoutes:
        changes = self._document().get("changes")
        if not isinstance(changes, dict) or not changes.get("routes"):
            log.info("no_change_section", path=str(self._path))
            return ChangedRoutes()
        kind = self._vocabulary.kind_for(changes.get("kind", ""))
        return self._parse(ChangedRoutes, kind=kind, numbers=changes["routes"])

    def _known_kind(self, label: str) -> TransportKind | None:
        try:
            return self._vocabulary.kind_for(label)
        except UnknownTransportKind:
            return None

    def _time_slot(self, raw: dict[str, Any]) -> TimeSlotRecord:
        label = str(raw.get("day", ""))
        return self._parse(
            TimeSlotRecord,
            day=self._vocabulary.day_for(label),
            day_label=label,
            hour=str(raw.get("hour", "")),
            minutes=raw.get("minutes", ""),
        )

    def _routes(self, kind: TransportKind) -> list[dict[str, Any]]:
        for category in self._categories():
            if self._known_kind(category.get("name", "")) == kind:
                return category.get("routes") or []
        return []

    def _categories(self) -> list[dict[str, Any]]:
        categories = self._document().get("categories") or []
        if not isinstance(categories, list):
            raise SourceError(f"'categories' must be a list in {self._path}")
        return categories

    def _document(self) -> dict[str, Any]:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            log.error("failed_to_read_schedule_dump", path=str(self._path), error=str(e))
            raise SourceError(f"Failed to read schedule dump {self._path}: {e}") from e
        if not isinstance(document, dict):
            raise SourceError(f"Schedule dump must contain a mapping: {self._path}")
        return document

    def _parse(self, model: type, **fields: Any):
        try:
            return model(**fields)
        except ValidationError as e:
            raise SourceError(f"Malformed {model.__name__} in {self._path}: {e}") from e
