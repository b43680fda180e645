"""Schedule source collaborators and the label vocabulary they translate through."""

from transit_snapshot.source.base import ScheduleSource
from transit_snapshot.source.vocabulary import ScheduleVocabulary
from transit_snapshot.source.yaml_source import YamlScheduleSource

__all__ = ["ScheduleSource", "ScheduleVocabulary", "YamlScheduleSource"]
