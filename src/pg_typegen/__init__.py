"""pg-typegen: Python types for hand-written Postgres queries, inferred from a live database."""
from .config import TypegenConfig, resolve_config
from .models import GenerateReport
from .orchestrator import Typegen, generate, generate_sync

__version__ = "0.1.0"

__all__ = [
    "GenerateReport",
    "Typegen",
    "TypegenConfig",
    "generate",
    "generate_sync",
    "resolve_config",
]
