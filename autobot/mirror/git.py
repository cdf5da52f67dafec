"""Git subprocess helpers for branch mirroring."""

from __future__ import annotations

import asyncio
import re
import shutil
import tempfile

from loguru import logger

from autobot.core.errors import TransientIOError

_HEAD_REF = re.compile(r"^refs/heads/(.+)$")

GIT_TIMEOUT_S = 300


async def run_git(args: list[str], cwd: str | None = None, timeout: float = GIT_TIMEOUT_S) -> str:
    """Run ``git <args>``; non-zero exit or timeout → TransientIOError."""
    logger.debug(f"git {' '.join(args)}")
    proc = await asyncio.create_subprocess_exec(
        "git",
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        proc.kill()
        await proc.wait()
        raise TransientIOError(f"git {args[0]} timed out after {timeout}s") from e
    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace").strip()
        raise TransientIOError(f"git {args[0]} exited {proc.returncode}: {err}")
    return stdout.decode("utf-8", errors="replace")


def parse_heads(output: str) -> dict[str, str]:
    """``git ls-remote --heads`` output → {branch name: commit hash}."""
    heads: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        hash_, ref = parts[0], parts[1]
        m = _HEAD_REF.match(ref)
        if m:
            heads[m.group(1)] = hash_
    return heads


class GitMirror:
    """Fetches branch tips from a remote and force-pushes them to mirror refs.

    Use as an async context manager: a scratch repository is created on
    enter and removed on exit.
    """

    def __init__(self, repo_url: str):
        self.repo_url = repo_url
        self._workdir: str | None = None

    async def list_heads(self) -> dict[str, str]:
        return parse_heads(await run_git(["ls-remote", "--heads", self.repo_url]))

    async def __aenter__(self) -> GitMirror:
        self._workdir = tempfile.mkdtemp(prefix="autobot-mirror-")
        try:
            await run_git(["init"], cwd=self._workdir)
            await run_git(["remote", "add", "origin", self.repo_url], cwd=self._workdir)
        except Exception:
            self._cleanup()
            raise
        return self

    async def __aexit__(self, *exc) -> None:
        self._cleanup()

    async def mirror(self, branch: str, mirror_ref: str) -> None:
        """Point ``refs/heads/<mirror_ref>`` at the current tip of ``branch``."""
        if self._workdir is None:
            raise RuntimeError("GitMirror used outside of its context")
        await run_git(["fetch", "--depth=1", "origin", branch], cwd=self._workdir)
        await run_git(
            ["push", "--force", "origin", f"FETCH_HEAD:refs/heads/{mirror_ref}"],
            cwd=self._workdir,
        )

    def _cleanup(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
