"""Synchronization services for swipelink."""

from .active_key import ActiveKeyResolver, generated_variant_index, reconcile_variant
from .change_notification import (
    NativeSwipeSource,
    ObserverSwipeSource,
    SwipeChangeSource,
    select_swipe_source,
)
from .conversation import (
    ChatRecord,
    ConversationEngine,
    EngineEvent,
    Role,
    normalize_identifier,
    normalize_record,
    normalize_records,
)
from .event_synchronizer import EventSynchronizer
from .interceptor import CapturePhase, GenerationInterceptor, InterceptorPatch
from .local_engine import LocalConversationEngine
from .mapping_store import MAX_ENTRIES, MappingKey, MappingStore, parse_key
from .rendering import RenderingSurface, RenderingSynchronizer
from .scheduler import Debouncer, QtScheduler, Scheduler
from .session_lifecycle import SessionLifecycleController
from .session_state import PendingCapture, SessionState
from .sync_settings import SyncSettings

__all__ = [
    "ActiveKeyResolver",
    "CapturePhase",
    "ChatRecord",
    "ConversationEngine",
    "Debouncer",
    "EngineEvent",
    "EventSynchronizer",
    "GenerationInterceptor",
    "InterceptorPatch",
    "LocalConversationEngine",
    "MAX_ENTRIES",
    "MappingKey",
    "MappingStore",
    "NativeSwipeSource",
    "ObserverSwipeSource",
    "PendingCapture",
    "QtScheduler",
    "RenderingSurface",
    "RenderingSynchronizer",
    "Role",
    "Scheduler",
    "SessionLifecycleController",
    "SessionState",
    "SwipeChangeSource",
    "SyncSettings",
    "generated_variant_index",
    "normalize_identifier",
    "normalize_record",
    "normalize_records",
    "parse_key",
    "reconcile_variant",
    "select_swipe_source",
]
