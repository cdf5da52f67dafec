"""Branch mirroring for the edge tester."""

from autobot.mirror.git import GitMirror, parse_heads
from autobot.mirror.mirror import BranchMirror

__all__ = ["BranchMirror", "GitMirror", "parse_heads"]
