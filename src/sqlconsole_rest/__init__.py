"""SQL console REST API with owner's and caller's rights execution."""

from ._app import create_app
from ._config import Settings
from ._credentials import AmbientCredentials, ExecutionMode, ExecutionRequest, ModeResolution
from ._executor import ExecutionOutcome, QueryExecutor

__version__ = "0.1.0"
__all__ = [
    "create_app",
    "Settings",
    "AmbientCredentials",
    "ExecutionMode",
    "ExecutionRequest",
    "ModeResolution",
    "ExecutionOutcome",
    "QueryExecutor",
]
