"""
Protocol-wide immutable parameters for the reward flywheel.

These values define the public rules of the distribution.
Changing them changes payouts and MUST be publicly announced.
"""

# Reward token (MAINNET, Token-2022)
REWARD_MINT = "pumpCmXqMfrsAkQ5r49WcJnRayYRqmXz6ae8H7H9Dfn"
WSOL_MINT = "So11111111111111111111111111111111111111112"

# Programs
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
PUMP_PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
PUMP_AMM_PROGRAM_ID = "pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA"

# Buyback fee receivers
FEE_WALLET_MAJOR = "9Cx7bw3opoGJ2z9uYbMLcfb1ukJbJN4CP5uBbDvWwu7Z"  # 4.5%
FEE_WALLET_MINOR = "9zT9rFzDA84K6hJJibcy9QjaFmM8Jm2LzdrvXEiBSq9g"  # 0.5%

# Pump.fun tokens use 6 decimals
TOKEN_DECIMALS = 6
LAMPORTS_PER_SOL = 1_000_000_000

# Standard token account: mint(32) | owner(32) | amount(8)
TOKEN_ACCOUNT_MIN_LEN = 72
SPL_TOKEN_ACCOUNT_SIZE = 165

# Holder scanning
LEADERBOARD_SIZE = 10
HOLDER_SNAPSHOT_SIZE = 100
LOYALTY_TOP_SIZE = 100
# Holders must hold strictly more than this (raw units)
MIN_HOLDER_RAW_BALANCE = 1 * (10**TOKEN_DECIMALS)
SCAN_DELAY_S = 2.0

# Points
CREATOR_POINT_WEIGHT = 2
LOYALTY_MULTIPLIER = 2

# Pots, in percent
DISTRIBUTABLE_PCT = 99
BONUS_PCT = 10
COMMUNITY_PCT = 90

# Airdrop
AIRDROP_THRESHOLD_RAW = 50_000 * (10**TOKEN_DECIMALS)
AIRDROP_BATCH_SIZE = 8
AIRDROP_BATCH_DELAY_S = 1.0
ACCOUNT_LOOKUP_ATTEMPTS = 3
ACCOUNT_LOOKUP_DELAY_S = 1.5
ACCOUNT_CHECK_CHUNK = 100

# Native-currency costs (lamports)
ATA_RENT_LAMPORTS = 2_039_280
SAFETY_BUFFER_LAMPORTS = LAMPORTS_PER_SOL // 20  # 0.05 SOL
FALLBACK_AIRDROP_COST_LAMPORTS = LAMPORTS_PER_SOL // 20
MIN_SPEND_LAMPORTS = LAMPORTS_PER_SOL // 20

# Buyback split, in tenths of a percent (sums to 1000)
BUYBACK_PERMILLE = 950
FEE_MAJOR_PERMILLE = 45
FEE_MINOR_PERMILLE = 5

CLAIM_SETTLE_DELAY_S = 2.0
CONFIRM_TIMEOUT_S = 60.0
