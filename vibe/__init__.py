from vibe.vibe_runtime import (
    Vibe, VibeHandle, DeferredCall, CallResult,
    create_vibe, vibe_of, vibe_fn, vibe_class, bind_vibe,
    clear_cache, read_logs, clear_logs,
)
from vibe.vibe_config import VibeSettings, configure_logging
from vibe.vibe_datatypes import (
    VibeError, GenerationError, ExecutionError, RecursionLimitError,
    ValidationError, CacheIOError,
)
from vibe.vibe_shape import ShapeFactory

shape = ShapeFactory()
