"""
Cardano ledger and adamint policy constants.
"""

from __future__ import annotations

# Base unit of the ledger currency
LOVELACE = "lovelace"
LOVELACE_PER_ADA = 1_000_000

# Transaction message metadata (CIP-20)
# Messages are chunked at 64 characters and stored as a list under the "msg"
# key. The ledger limits each metadata string to 64 UTF-8 bytes, so drafts are
# also checked in bytes before they are built for signing.
MESSAGE_METADATA_LABEL = "674"
METADATA_CHUNK_SIZE = 64

# Starting lovelace for an output carrying native tokens before the
# minimum-UTxO oracle adjusts it to the real requirement
TOKEN_OUTPUT_LOVELACE = 1_500_000

# Native script lock slot sentinel: no time lock
NO_POLICY_LOCK = "-1"

# Unix timestamp of slot 0 used for slot <-> date conversion
SHELLEY_REFERENCE_TIME = 1591566291

# Witnesses declared for a draft
SINGLE_WITNESS = 1
POLICY_WITNESSES = 2  # payment key + policy key
