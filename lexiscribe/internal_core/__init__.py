from .config import ScribeConfig, load_config
from .job_store import InMemoryJobStore

__all__ = ["InMemoryJobStore", "ScribeConfig", "load_config"]
