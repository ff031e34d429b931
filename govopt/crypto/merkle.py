"""
Binary Merkle tree over keccak-256 digests.

Leaves keep their insertion order (the history ledger is append-only, so
position is meaningful). An odd node at any level is paired with itself.
Leaf and interior hashes are domain-separated with a one-byte prefix so an
interior node can never be replayed as a leaf.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .hashing import keccak256

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

EMPTY_ROOT = keccak256(b"")


@dataclass(frozen=True)
class MerkleProof:
    """
    Inclusion proof for a single leaf.

    Attributes:
        leaf_index: Position of the leaf in append order; its bits give the
                    side of each sibling while folding upwards.
        siblings:   Sibling digests from the leaf level to just below the root.
    """
    leaf_index: int
    siblings: Tuple[bytes, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leafIndex": self.leaf_index,
            "siblings": ["0x" + s.hex() for s in self.siblings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleProof":
        return cls(
            leaf_index=int(data["leafIndex"]),
            siblings=tuple(bytes.fromhex(s[2:] if s.startswith("0x") else s)
                           for s in data["siblings"]),
        )


def hash_leaf(data: bytes) -> bytes:
    return keccak256(LEAF_PREFIX + data)


def hash_node(left: bytes, right: bytes) -> bytes:
    return keccak256(NODE_PREFIX + left + right)


def build_levels(leaves: Sequence[bytes]) -> List[List[bytes]]:
    """Return every level of the tree, leaves first, root level last."""
    if not leaves:
        return [[EMPTY_ROOT]]
    levels = [list(leaves)]
    current = levels[0]
    while len(current) > 1:
        next_level = []
        for i in range(0, len(current), 2):
            left = current[i]
            right = current[i + 1] if i + 1 < len(current) else left
            next_level.append(hash_node(left, right))
        levels.append(next_level)
        current = next_level
    return levels


def compute_root(leaves: Sequence[bytes]) -> bytes:
    return build_levels(leaves)[-1][0]


def build_proof(leaves: Sequence[bytes], index: int) -> MerkleProof:
    """
    Build the inclusion proof for ``leaves[index]``.

    Raises:
        IndexError: if index is out of range
    """
    if index < 0 or index >= len(leaves):
        raise IndexError(f"Leaf index {index} out of range (0..{len(leaves) - 1})")

    siblings: List[bytes] = []
    position = index
    for level in build_levels(leaves)[:-1]:
        if position % 2 == 0:
            sibling = position + 1 if position + 1 < len(level) else position
        else:
            sibling = position - 1
        siblings.append(level[sibling])
        position //= 2
    return MerkleProof(leaf_index=index, siblings=tuple(siblings))


def verify_proof(
    leaf: bytes,
    proof: MerkleProof,
    root: bytes,
    leaf_count: Optional[int] = None,
) -> bool:
    """
    Fold *leaf* up through *proof* and compare against *root*.

    When *leaf_count* is given, indices past the end of the tree are
    rejected outright.
    """
    if proof.leaf_index < 0:
        return False
    if leaf_count is not None and proof.leaf_index >= leaf_count:
        return False
    node = leaf
    position = proof.leaf_index
    for sibling in proof.siblings:
        if len(sibling) != len(leaf):
            return False
        if position % 2 == 0:
            node = hash_node(node, sibling)
        else:
            # Self-paired nodes only ever sit on the left
            if sibling == node:
                return False
            node = hash_node(sibling, node)
        position //= 2
    # Leftover index bits mean the proof is shorter than the claimed position
    if position != 0:
        return False
    return node == root
