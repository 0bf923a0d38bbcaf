"""Workflow orchestration for mirror runs.

The Executor validates the command line, resolves the workflow mode, prepares
the working and cache directories, owns the local cache registry and then
sequences collection, transfer and packaging for the selected mode:

    mirrorToDisk:  start registry -> collect -> copy -> stop registry -> archive
    diskToMirror:  unarchive -> start registry -> collect -> copy -> cluster resources
    prepare:       start registry -> collect -> verify every image is cached

Cleanup runs exactly once per invocation, whether the run succeeds, a
collector aborts or anything else fails.
"""

from __future__ import annotations

import dataclasses
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from imageset_mirror.archive import ArchiveExtractor, MirrorArchiver
from imageset_mirror.batch import BatchWorker
from imageset_mirror.clusterresources import ClusterResourcesGenerator
from imageset_mirror.collectors import (
    AdditionalCollector,
    CollectionAggregator,
    OperatorCollector,
    ReleaseCollector,
)
from imageset_mirror.config.imageset import ImageSetConfiguration, read_config
from imageset_mirror.config.settings import (
    CACHED_IMAGES_FILENAME,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PORT,
    DEFAULT_RETRY_TIMES,
    DOCKER_PROTOCOL,
    FILE_PROTOCOL,
    LOGS_DIR,
    MULTI_ARCH_ALL,
    REGISTRY_LOG_FILENAME,
    WORKING_DIR,
    WORKING_DIR_LAYOUT,
    resolve_cache_dir,
    strip_protocol,
)
from imageset_mirror.domain import (
    RegistryState,
    RunContext,
    RunOptions,
    ShutdownReason,
    WorkflowMode,
)
from imageset_mirror.exceptions import (
    CacheVerificationError,
    MirrorError,
    RegistryError,
    SetupError,
    ValidationError,
)
from imageset_mirror.logging import (
    EventLogger,
    LoggerFactory,
    RegistryLogSink,
    setup_logging,
)
from imageset_mirror.mirror import Mirror
from imageset_mirror.registry import LocalRegistry, parse_config, render_config

log = LoggerFactory.for_workflow()


@dataclass(frozen=True)
class CliOptions:
    """Flags as given on the command line, before mode resolution."""

    config_path: str = ""
    from_dir: str = ""
    working_dir_name: str = WORKING_DIR
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL
    quiet: bool = False
    force: bool = False
    secure_policy: bool = False
    src_tls_verify: bool = True
    dest_tls_verify: bool = True
    retry_times: int = DEFAULT_RETRY_TIMES


def resolve_mode(destination: str) -> WorkflowMode:
    """Mirror to disk for file:// destinations, disk to mirror for docker://."""
    if destination.startswith(FILE_PROTOCOL):
        return WorkflowMode.MIRROR_TO_DISK
    if destination.startswith(DOCKER_PROTOCOL):
        return WorkflowMode.DISK_TO_MIRROR
    raise ValidationError(
        "destination-protocol",
        "destination must have either file:// (mirror to disk) or docker:// "
        "(diskToMirror) protocol prefixes",
    )


class Executor:
    """Runs one mirror or prepare invocation."""

    def __init__(
        self,
        flags: CliOptions,
        ctx: RunContext | None = None,
        *,
        mirror: Mirror | None = None,
        fault_handler: Callable[[ShutdownReason], None] | None = None,
    ):
        self.flags = flags
        self.ctx = ctx or RunContext()
        self.mirror = mirror or Mirror()
        self.fault_handler = fault_handler
        self.logs_dir = Path(LOGS_DIR)

        self.opts: RunOptions | None = None
        self.config: ImageSetConfiguration | None = None
        self.aggregator: CollectionAggregator | None = None
        self.batch: BatchWorker | None = None
        self.cluster_resources: ClusterResourcesGenerator | None = None
        self.archiver: MirrorArchiver | None = None
        self.extractor: ArchiveExtractor | None = None
        self.registry: LocalRegistry | None = None
        self.registry_log: RegistryLogSink | None = None
        self._cleaned_up = False

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, destination: str) -> None:
        """Check the flag combination for a mirror run.

        Raises:
            ValidationError: On the first rule the arguments break
        """
        flags = self.flags
        if not flags.config_path:
            raise ValidationError("config-required", "use the --config flag it is mandatory")
        if destination.startswith(DOCKER_PROTOCOL) and not flags.from_dir:
            raise ValidationError(
                "from-required",
                "when destination is docker://, diskToMirror workflow is assumed, "
                "and the --from argument is mandatory",
            )
        if destination.startswith(FILE_PROTOCOL) and flags.from_dir:
            raise ValidationError(
                "from-forbidden",
                "when destination is file://, mirrorToDisk workflow is assumed, "
                "and the --from argument is not needed",
            )
        if flags.from_dir and not flags.from_dir.startswith(FILE_PROTOCOL):
            raise ValidationError(
                "from-protocol",
                "when --from is used, it must have file:// prefix",
            )
        resolve_mode(destination)

    def validate_prepare(self) -> None:
        """Check the flag combination for a prepare run.

        Raises:
            ValidationError: If --config or a file:// --from is missing
        """
        if not self.flags.config_path:
            raise ValidationError("config-required", "use the --config flag it is mandatory")
        if not self.flags.from_dir:
            raise ValidationError("from-required", "the --from argument is mandatory for prepare")
        if not self.flags.from_dir.startswith(FILE_PROTOCOL):
            raise ValidationError(
                "from-protocol", "when --from is used, it must have file:// prefix"
            )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _reset_logs(self) -> None:
        try:
            shutil.rmtree(self.logs_dir, ignore_errors=True)
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupError(f"unable to create logs directory {self.logs_dir}: {e}") from e

    def complete(self, destination: str) -> None:
        """Resolve the mode and build every collaborator of a mirror run.

        Raises:
            SetupError: If configuration or directories cannot be prepared
        """
        setup_logging(self.flags.log_level)
        self._reset_logs()
        self.config = read_config(self.flags.config_path)

        mode = resolve_mode(destination)
        if mode == WorkflowMode.MIRROR_TO_DISK:
            root = Path(strip_protocol(destination))
        else:
            root = Path(strip_protocol(self.flags.from_dir))
        log.info(f"mode {mode.value}")
        self._setup(mode, destination, root)

        if mode == WorkflowMode.MIRROR_TO_DISK:
            self.archiver = MirrorArchiver(self.opts, self.config.archive_size_gib)
        else:
            self.extractor = ArchiveExtractor(self.opts)

    def complete_prepare(self) -> None:
        """Build the collaborators of a prepare run.

        Raises:
            SetupError: If configuration or directories cannot be prepared
        """
        setup_logging(self.flags.log_level)
        self._reset_logs()
        self.config = read_config(self.flags.config_path)
        root = Path(strip_protocol(self.flags.from_dir))
        log.info(f"mode {WorkflowMode.PREPARE.value}")
        self._setup(WorkflowMode.PREPARE, self.flags.from_dir, root)

    def _setup(self, mode: WorkflowMode, destination: str, root: Path) -> None:
        flags = self.flags
        self.opts = RunOptions(
            destination=destination,
            mode=mode,
            root_dir=root,
            working_dir=root / flags.working_dir_name,
            cache_dir=resolve_cache_dir(),
            config_path=flags.config_path,
            from_dir=flags.from_dir,
            port=flags.port,
            log_level=flags.log_level,
            quiet=flags.quiet,
            force=flags.force,
            secure_policy=flags.secure_policy,
            src_tls_verify=flags.src_tls_verify,
            dest_tls_verify=flags.dest_tls_verify,
            retry_times=flags.retry_times,
        )
        try:
            for name in WORKING_DIR_LAYOUT:
                (self.opts.working_dir / name).mkdir(parents=True, exist_ok=True)
            self.opts.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SetupError(f"unable to create working directories: {e}") from e
        log.debug(f"working directory {self.opts.working_dir}")
        log.debug(f"cache directory {self.opts.cache_dir}")

        self.aggregator = CollectionAggregator(
            ReleaseCollector(self.config, self.opts),
            OperatorCollector(self.config, self.opts),
            AdditionalCollector(self.config, self.opts),
            on_abort=self.cleanup,
        )
        self.batch = BatchWorker(self.mirror)
        self.cluster_resources = ClusterResourcesGenerator(self.opts)

    def prepare_storage_and_logs(self) -> None:
        """Configure the local cache registry and open its log; does not start it.

        Raises:
            SetupError: If the cache directory is missing or the configuration
                cannot be parsed
        """
        opts = self.opts
        if not opts.cache_dir.is_dir():
            raise SetupError(f"cache directory {opts.cache_dir} does not exist")
        document = render_config(opts.cache_dir, opts.port, opts.log_level)
        registry_config = parse_config(document)
        try:
            self.registry_log = RegistryLogSink(
                self.logs_dir / REGISTRY_LOG_FILENAME, opts.log_level
            ).open()
        except OSError as e:
            raise SetupError(f"unable to open registry log: {e}") from e
        self.registry = LocalRegistry(
            registry_config, self.registry_log, fault_handler=self.fault_handler
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Execute the mirror workflow for the resolved mode, then clean up."""
        self.opts = dataclasses.replace(self.opts, multi_arch=MULTI_ARCH_ALL)
        try:
            if self.opts.is_mirror_to_disk():
                self.run_mirror_to_disk()
            elif self.opts.is_disk_to_mirror():
                self.run_disk_to_mirror()
        finally:
            self.cleanup()

    def run_mirror_to_disk(self) -> None:
        start = datetime.now()
        self.registry.start()
        collected = self.aggregator.collect_all(self.ctx)
        collection = datetime.now()
        self.batch.worker(self.ctx, collected, self.opts)

        if not self.registry.request_shutdown("mirror to disk complete"):
            raise RegistryError("local storage registry did not stop before archiving")
        try:
            chunks = self.archiver.build_archive(self.ctx, collected)
        finally:
            self.archiver.close()
        mirror = datetime.now()
        log.info(f"archive written to {', '.join(str(c) for c in chunks)}")
        EventLogger.log_phase_timings(log, start, collection, mirror)

    def run_disk_to_mirror(self) -> None:
        start = datetime.now()
        try:
            self.extractor.unarchive()
        finally:
            self.extractor.close()
        self.registry.start()
        collected = self.aggregator.collect_all(self.ctx)
        collection = datetime.now()
        self.batch.worker(self.ctx, collected, self.opts)
        self.cluster_resources.idms_generator(self.ctx, collected)
        mirror = datetime.now()
        EventLogger.log_phase_timings(log, start, collection, mirror)

    def run_prepare(self) -> None:
        """Check that every image of the configuration is in the local cache.

        Every destination is listed in logs/cached-images.txt whatever the
        outcome.

        Raises:
            CacheVerificationError: Naming exactly the images not cached
        """
        self.opts = dataclasses.replace(self.opts, multi_arch=MULTI_ARCH_ALL)
        report = self.logs_dir / CACHED_IMAGES_FILENAME
        try:
            with report.open("w", encoding="utf-8") as fh:
                self.registry.start()
                collected = self.aggregator.collect_all(self.ctx)
                missing = []
                for item in collected:
                    fh.write(f"{item.destination}\n")
                    try:
                        cached = self.mirror.check(self.ctx, item.destination, self.opts)
                    except MirrorError as e:
                        log.warning(f"unable to check {item.destination}: {e}")
                        cached = False
                    if not cached:
                        log.debug(f"not cached: {item.destination}")
                        missing.append(item.destination)
            if missing:
                raise CacheVerificationError(missing)
            log.info(f"all {len(collected)} image(s) are available in the cache")
        finally:
            self.cleanup()

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Release run resources; later calls do nothing."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self._release_resources()

    def _release_resources(self) -> None:
        registry = self.registry
        if registry is not None and registry.state == RegistryState.SERVING:
            try:
                registry.request_shutdown("cleanup")
            except Exception as e:
                log.warning(f"Failed to stop local storage registry: {e}")
        if self.registry_log is not None:
            try:
                self.registry_log.close()
            except Exception as e:
                log.warning(f"Failed to close registry log: {e}")
        if self.opts is not None and not self.opts.is_prepare():
            shutil.rmtree(self.logs_dir, ignore_errors=True)
