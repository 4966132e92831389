from .config import ScribeConfig, load_config
from .session_store import InMemorySessionStore

__all__ = ["ScribeConfig", "load_config", "InMemorySessionStore"]
