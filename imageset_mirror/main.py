import argparse
import sys

from imageset_mirror.__version__ import __version__
from imageset_mirror.config.settings import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_PORT,
    DEFAULT_RETRY_TIMES,
    WORKING_DIR,
)
from imageset_mirror.exceptions import CollectionError, MirrorError
from imageset_mirror.logging import LoggerFactory, setup_logging
from imageset_mirror.workflow import CliOptions, Executor

log = LoggerFactory.for_workflow()


def _add_shared_flags(parser):
    parser.add_argument("-c", "--config", default="", help="Path to the image set configuration file")
    parser.add_argument("--from", dest="from_dir", default="", help="Local storage directory for disk to mirror workflow (file://...)")
    parser.add_argument("--dir", dest="working_dir", default=WORKING_DIR, help="Working directory name under the storage directory")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help="HTTP port used by the local cache registry")
    parser.add_argument("--loglevel", default=DEFAULT_LOG_LEVEL, choices=["trace", "debug", "info", "error"], help="Log level")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress copy progress output")
    parser.add_argument("-f", "--force", action="store_true", help="Copy images even if they are already cached")
    parser.add_argument("--secure-policy", action="store_true", help="Enforce signature policy verification")
    parser.add_argument("--src-skip-tls", action="store_true", help="Do not verify TLS of the source registry")
    parser.add_argument("--dest-skip-tls", action="store_true", help="Do not verify TLS of the destination registry")
    parser.add_argument("--retry-times", type=int, default=DEFAULT_RETRY_TIMES, help="Number of copy retries")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="imageset-mirror",
        description="Mirror container image sets to disk, and from disk to a registry",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    mirror_parser = subparsers.add_parser("mirror", help="Mirror images to disk or to a registry")
    mirror_parser.add_argument("destination", help="file://<path> (mirror to disk) or docker://<registry> (disk to mirror)")
    _add_shared_flags(mirror_parser)

    prepare_parser = subparsers.add_parser("prepare", help="Verify the local cache holds every image of the configuration")
    _add_shared_flags(prepare_parser)
    return parser


def flags_from_args(args) -> CliOptions:
    return CliOptions(
        config_path=args.config,
        from_dir=args.from_dir,
        working_dir_name=args.working_dir,
        port=args.port,
        log_level=args.loglevel,
        quiet=args.quiet,
        force=args.force,
        secure_policy=args.secure_policy,
        src_tls_verify=not args.src_skip_tls,
        dest_tls_verify=not args.dest_skip_tls,
        retry_times=args.retry_times,
    )


def run_mirror(executor: Executor, destination: str) -> None:
    executor.validate(destination)
    executor.complete(destination)
    executor.prepare_storage_and_logs()
    executor.run()


def run_prepare(executor: Executor) -> None:
    executor.validate_prepare()
    executor.complete_prepare()
    executor.prepare_storage_and_logs()
    executor.run_prepare()


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.loglevel)
    executor = Executor(flags_from_args(args))

    try:
        if args.command == "prepare":
            run_prepare(executor)
        else:
            run_mirror(executor, args.destination)
    except CollectionError as error:
        log.error(f"collection failed: {error}")
        if error.partial:
            log.debug(f"{len(error.partial)} image(s) collected before the failure")
        executor.cleanup()
        sys.exit(1)
    except MirrorError as error:
        log.error(str(error))
        executor.cleanup()
        sys.exit(1)
    except KeyboardInterrupt:
        executor.ctx.cancel()
        log.warning("Interrupted")
        executor.cleanup()
        sys.exit(1)


if __name__ == "__main__":
    main()
