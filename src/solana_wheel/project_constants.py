"""
Project-wide parameters for the $WHEEL holder wheel.

These values define the public rules of the wheel and the payout policy.
Changing them changes eligibility or payouts and MUST be publicly announced.
"""

from decimal import Decimal

# Default token mint (MAINNET); overridden by TOKEN_MINT
TOKEN_MINT = "6MjfcbDGeCe4AapDP2uUnPBrMKKKejeXr8UCArBC92vg"

# Pump.fun tokens use 6 decimals
TOKEN_DECIMALS = 6

LAMPORTS_PER_SOL = 1_000_000_000

# Known liquidity pool / program / wrapped-asset addresses never on the wheel
EXCLUDED_ADDRESSES = frozenset(
    {
        "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1",  # Raydium Authority V4
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",  # Raydium AMM Program
        "CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK",  # Raydium CPMM
        "39azUYFWPz3VHgKCf3VChUwbpURdCHRxjWVowf5jUJjg",  # Raydium CLMM
        "So11111111111111111111111111111111111111112",  # Wrapped SOL
    }
)

# A winner sits out the next N spins
WINNER_COOLDOWN_SPINS = 2

# Spin history kept in memory / on disk
MAX_HISTORY = 50

# Total SOL sent before this server kept its own books
BASELINE_TOTAL_DISTRIBUTED = Decimal("6.0")

# Holder provider page size (Helius getTokenAccounts maximum)
HOLDER_PAGE_SIZE = 1000

# Payout policy (SOL unless stated)
KEEP_FRACTION = Decimal("0.10")
RESERVED_HOP_FEES = Decimal("0.003")
MIN_SIGNIFICANT_CLAIM = Decimal("0.001")
GUARANTEED_MINIMUM_PAYOUT = Decimal("0.002")
HOP_NETWORK_FEE_LAMPORTS = 5_000
CLAIM_PRIORITY_FEE = 0.0001

# Timing (seconds)
SPIN_INTERVAL_SEC = 120
HOLDER_REFRESH_SEC = 300
SPIN_ANIMATION_SEC = 5
CLAIM_SETTLE_SEC = 2.0
HOP_SLACK_SEC = 1.5
CONFIRM_TIMEOUT_SEC = 60.0

PUMPPORTAL_TRADE_LOCAL_URL = "https://pumpportal.fun/api/trade-local"
EXPLORER_TX_URL = "https://solscan.io/tx/{signature}"
