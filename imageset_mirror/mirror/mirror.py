"""Image copy and existence checks.

Copies are delegated to ``skopeo``; existence checks talk to the registry
API directly so the prepare workflow can verify the local cache without
pulling anything.
"""

from __future__ import annotations

import asyncio

import aiohttp

from imageset_mirror.config.settings import MULTI_ARCH_ALL
from imageset_mirror.domain import RunContext, RunOptions
from imageset_mirror.exceptions import MirrorError
from imageset_mirror.logging import get_logger
from imageset_mirror.mirror.commands import run_checked_command
from imageset_mirror.mirror.reference import parse_reference

log = get_logger(source=__name__)

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)

LOCAL_HOSTS = ("localhost", "127.0.0.1", "[::1]")


def is_local_registry(registry: str) -> bool:
    if registry.startswith("["):
        return registry.split("]", 1)[0] + "]" in LOCAL_HOSTS
    host = registry.rsplit(":", 1)[0]
    return host in LOCAL_HOSTS


class Mirror:
    """Copy images between locations and check for their presence."""

    def __init__(self, executable: str = "skopeo", check_timeout_seconds: int = 30):
        self.executable = executable
        self.timeout = aiohttp.ClientTimeout(total=check_timeout_seconds)

    def build_copy_command(
        self, source: str, destination: str, opts: RunOptions
    ) -> list[str]:
        src_ref = parse_reference(source)
        dest_ref = parse_reference(destination)
        src_tls = opts.src_tls_verify and not is_local_registry(src_ref.registry)
        dest_tls = opts.dest_tls_verify and not is_local_registry(dest_ref.registry)

        command = [self.executable]
        if not opts.secure_policy:
            command.append("--insecure-policy")
        command.append("copy")
        if opts.multi_arch == MULTI_ARCH_ALL:
            command.append("--all")
        command.extend(
            [
                "--retry-times",
                str(opts.retry_times),
                f"--src-tls-verify={str(src_tls).lower()}",
                f"--dest-tls-verify={str(dest_tls).lower()}",
            ]
        )
        if opts.quiet:
            command.append("--quiet")
        command.extend([source, destination])
        return command

    def copy(
        self, ctx: RunContext, source: str, destination: str, opts: RunOptions
    ) -> None:
        """Copy one image.

        Raises:
            RuntimeError: If the copy command fails
            InterruptedError: If the run was cancelled
        """
        ctx.raise_if_cancelled()
        run_checked_command(self.build_copy_command(source, destination, opts))

    def check(self, ctx: RunContext, destination: str, opts: RunOptions) -> bool:
        """Return True if the destination manifest exists.

        Raises:
            MirrorError: If the registry could not be queried
        """
        ctx.raise_if_cancelled()
        return asyncio.run(self.check_async(destination, opts))

    async def check_async(self, destination: str, opts: RunOptions) -> bool:
        ref = parse_reference(destination)
        local = is_local_registry(ref.registry)
        scheme = "http" if local else "https"
        url = f"{scheme}://{ref.registry}/v2/{ref.path}/manifests/{ref.reference}"
        ssl = bool(opts.dest_tls_verify) and not local
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.head(
                    url, headers={"Accept": MANIFEST_ACCEPT}, ssl=ssl
                ) as resp:
                    if resp.status == 200:
                        return True
                    if resp.status == 404:
                        return False
                    raise MirrorError(
                        f"unexpected status {resp.status} checking {destination}"
                    )
            except aiohttp.ClientError as e:
                log.debug(f"Network error checking {destination}: {e}")
                raise MirrorError(f"unable to reach registry for {destination}: {e}") from e
