"""
Content identifier computation.

dsoul does not implement the IPFS hash itself. HashPrimitive is the seam:
the default implementation shells out to the ipfs binary in only-hash mode
(nothing is added to a repo or announced), and tests pass their own.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import List, Optional, Protocol, Sequence

from dsoul.skills.errors import HashComputationError, NotConfigured

logger = logging.getLogger(__name__)


class HashPrimitive(Protocol):
    """Computes the CID of a byte buffer."""

    async def compute(self, data: bytes) -> str:
        ...


class IpfsCliHasher:
    """CID via `ipfs add --only-hash -Q` reading the payload from stdin."""

    def __init__(self, command: Optional[Sequence[str]] = None):
        self.command: List[str] = list(command or ["ipfs", "add", "--only-hash", "-Q"])

    async def compute(self, data: bytes) -> str:
        """
        Hash data with the configured command

        Raises:
            NotConfigured: The executable is not on PATH
            HashComputationError: Non-zero exit or empty output
        """
        executable = shutil.which(self.command[0])
        if executable is None:
            raise NotConfigured(
                f"Hash command '{self.command[0]}' not found. Install the IPFS CLI (kubo) "
                "or set hash_command in settings."
            )

        proc = await asyncio.create_subprocess_exec(
            executable,
            *self.command[1:],
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate(input=data)

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise HashComputationError(f"Hash command failed (exit {proc.returncode}): {message}")

        cid = stdout.decode("utf-8", errors="replace").strip().splitlines()
        if not cid or not cid[-1].strip():
            raise HashComputationError("Hash command produced no CID")

        logger.debug(f"Computed CID {cid[-1].strip()} for {len(data)} bytes")
        return cid[-1].strip()


__all__ = ["HashPrimitive", "IpfsCliHasher"]
