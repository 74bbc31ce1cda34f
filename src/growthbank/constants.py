"""Economic constants shared by the reward and decay engines."""

# Focus reward
FOCUS_COIN_RATE = 30
MIN_FOCUS_MINUTES = 5
MAX_FOCUS_MINUTES = 1440

# Bonuses
STREAK_LONG_DAYS = 7
STREAK_LONG_BONUS = 10
STREAK_SHORT_DAYS = 3
STREAK_SHORT_BONUS = 5
STREAK_LOOKBACK_DAYS = 30
FIRST_ATTEMPT_BONUS = 5
HARD_DIFFICULTY_BONUS = 3
EXTREME_DIFFICULTY_BONUS = 8
DAILY_GOAL_SESSIONS = 3
DAILY_GOAL_BONUS = 15
WEEKEND_BONUS = 2

# Decay scan windows
ACTIVE_USER_WINDOW_DAYS = 30
DECAY_SESSION_WINDOW_DAYS = 90
MAX_PREDICTION_DAYS = 30

# History paging
DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100
MAX_BATCH_CALCULATIONS = 50

# Source kinds
SOURCE_SESSION = "session"
SOURCE_SESSION_BONUS = "session_bonus"
SOURCE_SESSION_DECAY = "session_decay"
SOURCE_REWARD = "reward"
SOURCE_ADMIN_ADJUSTMENT = "admin_adjustment"
SOURCE_ACHIEVEMENT = "achievement"
