from .collectors import StatsOptions, collect_snapshot
from .config import ApiKeyDiff, SignedChecksum, StatsConfig, load_config_from_env
from .coordinator import SubmissionCoordinator, SubmissionOutcome
from .errors import ConfigError, FleetStatsError, PayloadError, SnapshotError
from .gate import GateDecision, SubmissionGate
from .observability import configure_logging, configure_logging_from_env
from .payload import build_payload, compute_checksum
from .snapshot import Snapshot, make_snapshot
from .state import JsonFileStateStore, MemoryStateStore, PersistedState
from .transport import HttpTransport, TransportResult

__version__ = "0.1.0"

__all__ = [
    "ApiKeyDiff",
    "ConfigError",
    "FleetStatsError",
    "GateDecision",
    "HttpTransport",
    "JsonFileStateStore",
    "MemoryStateStore",
    "PayloadError",
    "PersistedState",
    "SignedChecksum",
    "Snapshot",
    "SnapshotError",
    "StatsConfig",
    "StatsOptions",
    "SubmissionCoordinator",
    "SubmissionGate",
    "SubmissionOutcome",
    "TransportResult",
    "build_payload",
    "collect_snapshot",
    "compute_checksum",
    "configure_logging",
    "configure_logging_from_env",
    "load_config_from_env",
    "make_snapshot",
]
