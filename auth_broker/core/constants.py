"""Application-wide constants for the auth broker.

Lifetimes are in milliseconds to match the persisted ``expiresAt`` column.
"""

# ========================================
# Record Lifetimes
# ========================================

PENDING_AUTH_TTL_MS = 10 * 60 * 1000  # 10 minutes
AUTH_CODE_TTL_MS = 10 * 60 * 1000  # 10 minutes
ACCESS_TOKEN_TTL_MS = 60 * 60 * 1000  # 1 hour

ACCESS_TOKEN_EXPIRES_IN = 3600  # seconds, reported to clients

# ========================================
# Volatile Store
# ========================================

SWEEP_INTERVAL_SECONDS = 5 * 60  # 5 minutes

# ========================================
# Token Issuance
# ========================================

TOKEN_TYPE = "Bearer"
TOKEN_BYTES = 32  # 256 bits of entropy per code/token

# Scopes attached to every broker-issued token pair
ISSUED_SCOPES = ["claudeai"]

DEFAULT_CODE_CHALLENGE_METHOD = "S256"

# ========================================
# Durable Store Tables
# ========================================

CLIENTS_TABLE = "clients"
PENDING_AUTHS_TABLE = "pendingauths"
AUTH_CODES_TABLE = "authcodes"
ACCESS_TOKENS_TABLE = "accesstokens"
CODE_CHALLENGES_TABLE = "codechallenges"
REFRESH_TOKENS_TABLE = "refreshtokens"

CLIENT_PARTITION = "client"
PENDING_PARTITION = "pending"
CODE_PARTITION = "code"
TOKEN_PARTITION = "token"
CHALLENGE_PARTITION = "challenge"
REFRESH_PARTITION = "refresh"

# ========================================
# Service Metadata
# ========================================

SERVICE_VERSION = "1.2.0"
