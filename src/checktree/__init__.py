"""
checktree: tri-state checked-state consistency for hierarchical item stores.

Keeps every node's checked / unchecked / mixed state a correct function of
its subtree while the backing store changes underneath it.
"""

__version__ = "0.1.0"
