"""
Protocol-wide immutable parameters for Colasseum outcome resolution.

These values are fixed by agreement with the deployed contracts and the
claim circuit. Changing any of them makes locally computed outcomes and
proofs disagree with what the verifier accepts.
"""

# BN254 scalar field order (the circuit's arithmetic field, MAX_HASH on-chain)
FIELD_PRIME = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

# Claim window: the beacon timestamp must lie in [target, target + MAX_WINDOW]
MAX_WINDOW = 144  # 12 slots * 12 seconds

# Binary search never looks further back than this many blocks (~1 day)
SEARCH_LOOKBACK_BLOCKS = 10_000

# Forward scan after the candidate block when its root is not observable yet
MAX_FORWARD_BLOCKS = 20

# Price of one chance, in wei (1 gwei)
FIXED_CHANCE_PRICE = 1_000_000_000

WEI_PER_ETH = 10**18

# Beacon root is split into two 128-bit halves for the circuit
ROOT_HALF_BITS = 128

# Status bit flags (match Colasseum.sol)
TRIAL_ACTIVE = 1
TRIAL_CANCELLED = 2
CHANCE_CLAIMED = 1
CHANCE_REFUNDED = 2

# Mainnet deployment
COLASSEUM_ADDRESS = "0xEBB82461b745d4be95C95beCa7095f0EC6c530AC"
VERIFIER_ADDRESS = "0x6451e5027EC265c117FbDA85579B337F459D3837"

# Local secret store key prefixes
PASSPHRASE_PREFIX = "miladycola_passphrase_"
REVEAL_SEEN_PREFIX = "miladycola_reveal_seen_"
WIN_RESULT_PREFIX = "miladycola_win_result_"
