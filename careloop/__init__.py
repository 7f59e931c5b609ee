"""careloop core library: protocol lifecycle and habit calendar engines.

Public API re-exports for convenient imports:
    from careloop import resolve, build_month_grid, HabitProgressController, ...
"""

# Configuration
from careloop.config import (
    Settings,
    config_path,
    load_settings,
    configure_logging,
    get_user_timezone,
    today_str,
    now_local,
)

# Models
from careloop.models import (
    PRESCRIBED,
    ACTIVE,
    PAUSED,
    COMPLETED,
    ABANDONED,
    Doctor,
    ProtocolInfo,
    ProtocolAssignment,
    Availability,
    ProgressEntry,
    Habit,
    ToggleResult,
    HabitStats,
    CalendarDay,
)

# Errors
from careloop.errors import (
    CareloopError,
    ApiError,
    NetworkError,
    AuthError,
    LocalPreconditionError,
    InvalidTransition,
    StartInProgress,
    ConcurrentToggle,
    InvalidHabit,
    HabitNotFound,
    AlreadyStarted,
    StartFailed,
    ToggleFailed,
    HabitRequestFailed,
)

# Pure engines
from careloop.availability import resolve, start_block_reason
from careloop.calendar_grid import build_month_grid, shift_month, month_param, current_month_days
from careloop.progress import progress_map, is_completed_on, merge
from careloop.stats import habit_stats

# Collaborators & controllers
from careloop.api import ApiClient, Session
from careloop.lifecycle import ProtocolLifecycleController
from careloop.habits import HabitProgressController, category_display, validate_habit
