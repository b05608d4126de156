from .monitored_system import MonitoredSystem, EventSourceKind
from .elasticsearch_connection import ElasticsearchConnection
from .event import Event
from .external_event_metadata import ExternalEventMetadata
from .event_score import EventScore
from .window import Window
from .effective_score import EffectiveScore
from .finding import Finding, FindingStatus
from .app_config import AppConfig
from .audit_log import AuditLog
from .criteria import CRITERIA, CRITERION_IDS

__all__ = [
    "MonitoredSystem",
    "EventSourceKind",
    "ElasticsearchConnection",
    "Event",
    "ExternalEventMetadata",
    "EventScore",
    "Window",
    "EffectiveScore",
    "Finding",
    "FindingStatus",
    "AppConfig",
    "AuditLog",
    "CRITERIA",
    "CRITERION_IDS",
]
