"""
GrowthBank - Growth-coin economy for study sessions

Ledger · Rewards · Decay · Scheduling

Learners earn coins for focused study and completed work; coins decay
when a subject is left untouched for too long.

Version: 0.1.0
"""

__version__ = "0.1.0"

# Ledger
from .ledger import (
    ChangeKind,
    EntryDraft,
    HistoryPage,
    HistoryQuery,
    LedgerEntry,
    LedgerStore,
)

# Rewards
from .reward import (
    BonusItem,
    BonusKind,
    RewardCalculator,
    RewardConfig,
    RewardResult,
)

# Decay
from .decay import (
    CycleReport,
    DecayKind,
    DecayPrediction,
    DecayRule,
    DecayRuleEngine,
    DecayRuleRepository,
    DecayScheduler,
    DecayScope,
)

# Services and wiring
from .services import CoinService
from .app import GrowthBank
from .config import GrowthBankConfig

# Exceptions
from .exceptions import (
    GrowthBankError,
    ValidationError,
    NotFoundError,
    CatalogNotFoundError,
    SessionNotFoundError,
    RuleNotFoundError,
    InsufficientBalanceError,
    InternalComputeError,
    StorageError,
    ConfigurationError,
)

__all__ = [
    # Version
    "__version__",

    # Ledger
    "ChangeKind",
    "EntryDraft",
    "HistoryPage",
    "HistoryQuery",
    "LedgerEntry",
    "LedgerStore",

    # Rewards
    "BonusItem",
    "BonusKind",
    "RewardCalculator",
    "RewardConfig",
    "RewardResult",

    # Decay
    "CycleReport",
    "DecayKind",
    "DecayPrediction",
    "DecayRule",
    "DecayRuleEngine",
    "DecayRuleRepository",
    "DecayScheduler",
    "DecayScope",

    # Services
    "CoinService",
    "GrowthBank",
    "GrowthBankConfig",

    # Exceptions
    "GrowthBankError",
    "ValidationError",
    "NotFoundError",
    "CatalogNotFoundError",
    "SessionNotFoundError",
    "RuleNotFoundError",
    "InsufficientBalanceError",
    "InternalComputeError",
    "StorageError",
    "ConfigurationError",
]
