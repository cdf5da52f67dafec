"""BranchMirror: keeps ``<branch>-mirror`` refs in sync, one branch at a time."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from autobot.core.config.schema import EdgeTesterConfig
from autobot.mirror.git import GitMirror


class BranchMirror:
    """Mirror matching branches, pausing ``delay_s`` after each push.

    The pause gives the downstream test runner time to pick up one mirror
    before the next one moves; it queues duplicate runs otherwise.

    Every ``run()`` opens its own GitMirror, so overlapping cron firings
    never share a scratch repository.
    """

    name = "edgeTester"

    def __init__(
        self,
        repo_url: str,
        branch_suffixes: list[str],
        mirror_suffix: str = "-mirror",
        delay_s: float = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        git_factory: Callable[[str], GitMirror] = GitMirror,
    ):
        self.repo_url = repo_url
        self.branch_suffixes = tuple(branch_suffixes)
        self.mirror_suffix = mirror_suffix
        self.delay_s = delay_s
        self._sleep = sleep
        self._git_factory = git_factory

    @classmethod
    def from_config(cls, config: EdgeTesterConfig) -> BranchMirror:
        return cls(
            config.repo_url,
            branch_suffixes=config.branch_suffixes,
            mirror_suffix=config.mirror_suffix,
            delay_s=config.delay_s,
        )

    def is_target(self, branch: str) -> bool:
        return branch.endswith(self.branch_suffixes)

    async def run(self) -> int:
        """Mirror every out-of-date target branch. Returns the number pushed."""
        git = self._git_factory(self.repo_url)
        heads = await git.list_heads()
        pushed = 0
        async with git:
            for branch, hash_ in heads.items():
                if not self.is_target(branch):
                    continue
                mirror_ref = f"{branch}{self.mirror_suffix}"
                current = heads.get(mirror_ref)
                if current == hash_:
                    logger.debug(f"{self.name}: mirror up-to-date: {mirror_ref} -> {hash_[:12]}")
                    continue

                try:
                    await git.mirror(branch, mirror_ref)
                    action = "Created" if current is None else "Updated"
                    logger.info(f"{self.name}: {action} mirror: {mirror_ref} -> {hash_[:12]}")
                    pushed += 1
                except Exception as e:
                    logger.error(f"{self.name}: failed to update mirror {mirror_ref}: {e}")
                await self._sleep(self.delay_s)
        return pushed
