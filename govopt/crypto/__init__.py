"""
Governance Engine Crypto Module

Hashing and Merkle-proof helpers for commitments and the history ledger.
"""

from .hashing import (
    hex_to_digest,
    keccak256,
    keccak256_hex,
)
from .merkle import (
    EMPTY_ROOT,
    MerkleProof,
    build_proof,
    compute_root,
    hash_leaf,
    verify_proof,
)

__all__ = [
    # Hashing
    "hex_to_digest",
    "keccak256",
    "keccak256_hex",
    # Merkle
    "EMPTY_ROOT",
    "MerkleProof",
    "build_proof",
    "compute_root",
    "hash_leaf",
    "verify_proof",
]
