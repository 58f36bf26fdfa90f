"""BeamMP container control through the docker CLI."""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from beammeup.config import get_settings
from beammeup.errors import ContainerError

log = logging.getLogger(__name__)

MAX_LOG_LINES = 1000
_INSPECT_FORMAT = "--format={{.State.Running}},{{.State.Status}},{{.State.StartedAt}}"


@dataclass(frozen=True)
class ContainerStatus:
    running: bool
    state: str
    started_at: Optional[str] = None


def run_cmd(cmd: List[str], timeout: int = 30) -> Tuple[str, int]:
    """Run a subprocess and return (stdout, returncode); stderr is appended on failure."""
    settings = get_settings()
    env = None
    if settings.docker_host:
        env = {**os.environ, "DOCKER_HOST": settings.docker_host}
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, env=env)
    except subprocess.TimeoutExpired:
        return "Command timed out", 1
    except FileNotFoundError:
        return f"Command not found: {cmd[0]}", 1
    output = result.stdout
    if result.returncode != 0 and result.stderr:
        output = (output + "\n" + result.stderr).strip()
    return output, result.returncode


async def run_cmd_async(cmd: List[str], timeout: int = 30) -> Tuple[str, int]:
    """run_cmd in a worker thread."""
    return await asyncio.to_thread(run_cmd, cmd, timeout)


async def restart_container(name: Optional[str] = None) -> None:
    container = name or get_settings().container_name
    output, rc = await run_cmd_async(["docker", "restart", container], timeout=120)
    if rc != 0:
        log.error("docker restart %s failed: %s", container, output)
        raise ContainerError("Failed to restart server")
    log.info("Restarted container %s", container)


async def get_container_status(name: Optional[str] = None) -> ContainerStatus:
    """Running/state/startedAt; a failed inspect reports the container as stopped."""
    container = name or get_settings().container_name
    output, rc = await run_cmd_async(["docker", "inspect", container, _INSPECT_FORMAT], timeout=10)
    if rc != 0:
        log.debug("docker inspect %s failed: %s", container, output)
        return ContainerStatus(running=False, state="stopped")
    running, _, rest = output.strip().partition(",")
    state, _, started_at = rest.partition(",")
    return ContainerStatus(
        running=running == "true",
        state=state or "unknown",
        started_at=started_at or None,
    )


def uptime_seconds(status: ContainerStatus, now: Optional[datetime] = None) -> int:
    """Seconds since the container started, 0 when stopped or unknown."""
    if not status.running or not status.started_at:
        return 0
    stamp = status.started_at.strip()
    # Docker prints nanoseconds: 2026-10-19T04:49:00.123456789Z
    if "." in stamp:
        head, _, frac = stamp.partition(".")
        stamp = f"{head}.{frac.rstrip('Z')[:6]}+00:00"
    else:
        stamp = stamp.replace("Z", "+00:00")
    try:
        started = datetime.fromisoformat(stamp)
    except ValueError:
        return 0
    now = now or datetime.now(timezone.utc)
    return max(0, int((now - started).total_seconds()))


async def get_container_logs(lines: int = 200, name: Optional[str] = None) -> str:
    container = name or get_settings().container_name
    lines = max(1, min(lines, MAX_LOG_LINES))
    output, rc = await run_cmd_async(["docker", "logs", f"--tail={lines}", container], timeout=30)
    if rc != 0:
        log.error("docker logs %s failed: %s", container, output)
        raise ContainerError("Failed to retrieve logs")
    return output
