"""Chat Bridge - host/view bridge for streaming AI chat.

A correlated request/response/event protocol connecting one host process
to any number of front-end views, plus the pure streaming reducer that
folds model output into a persisted conversation transcript.
"""

from .config import BridgeConfig
from .host import BridgeHost

__version__ = "0.1.0"

__all__ = [
    "BridgeConfig",
    "BridgeHost",
    "__version__",
]
