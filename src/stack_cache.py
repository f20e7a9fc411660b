"""
Stack Cache Module
==================
Deduplicates call stacks into a shared prefix trie.

Stacks arrive leaf-to-root and are walked root-to-leaf so that common
callers collapse onto shared trie paths. Memory is bounded by the number of
distinct stacks, not by the number of events. Nodes live in an arena list
and are addressed by integer handles; each node owns a mapping from child
frame to child handle.

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from trace_events import Frame, StackFrame

logger = logging.getLogger(__name__)

ROOT_HANDLE = 0
UNKNOWN_FRAME = StackFrame("0", "unknown", "unknown")


@dataclass
class CallStackNode:
    """One frame in the trie, with the display names from root to itself."""
    frame: StackFrame
    stack: Tuple[str, ...]
    parent: Optional[int] = None
    children: Dict[StackFrame, int] = field(default_factory=dict)


class StackCache:
    """Shared call-stack trie for one analysis pass (single writer)."""

    def __init__(self, inlined_module: str = "inlined"):
        """
        Initialize an empty cache rooted at the "unknown" sentinel frame.

        Args:
            inlined_module: Module name the tracer uses for inlined frames
        """
        self.inlined_module = inlined_module
        self.nodes: List[CallStackNode] = [
            CallStackNode(UNKNOWN_FRAME, (UNKNOWN_FRAME.display_name,))
        ]
        self.lookups = 0

    def lookup(self, frames: Iterable[Frame]) -> int:
        """
        Resolve a leaf-to-root frame sequence to its shared stack handle.

        Inlined frames inherit the module of the nearest real caller already
        walked in this stack. Non-frame markers are skipped. A stack with no
        symbolic frames resolves to the root handle.

        Args:
            frames: Leaf-to-root frames of one event

        Returns:
            Handle of the trie node for the leaf frame
        """
        self.lookups += 1
        current = ROOT_HANDLE
        prev_module = None

        for frame in reversed(list(frames)):
            if not isinstance(frame, StackFrame):
                continue

            if frame.module == self.inlined_module and prev_module is not None:
                frame = StackFrame(frame.address, prev_module, frame.symbol)
            prev_module = frame.module

            node = self.nodes[current]
            child = node.children.get(frame)
            if child is None:
                prefix = node.stack if current != ROOT_HANDLE else ()
                child = len(self.nodes)
                self.nodes.append(CallStackNode(frame, prefix + (frame.display_name,), current))
                node.children[frame] = child
            current = child

        return current

    def stack(self, handle: Optional[int]) -> Tuple[str, ...]:
        """Display names from root to leaf for a handle (empty for None)."""
        if handle is None:
            return ()
        return self.nodes[handle].stack

    def frame(self, handle: Optional[int]) -> StackFrame:
        """Leaf frame of a handle."""
        if handle is None:
            return UNKNOWN_FRAME
        return self.nodes[handle].frame

    def leaf_count(self) -> int:
        """Number of nodes that terminate at least one stack and have no children."""
        return sum(1 for node in self.nodes[1:] if not node.children)

    def __len__(self):
        return len(self.nodes)

    def get_statistics(self) -> Dict[str, int]:
        return {
            'lookups': self.lookups,
            'nodes': len(self.nodes),
            'leaves': self.leaf_count(),
            'max_depth': max((len(n.stack) for n in self.nodes[1:]), default=0),
        }
