"""CLI entry point for binfinder."""
import argparse
import logging
import sys

from . import __version__
from .aggregate import aggregate_directory, export_csv
from .config import FALLBACK_POLICIES, Config, load_config
from .errors import ConfigError, DiscoveryError, ExecutionFailure, OutputDirError
from .executor import DockerExecutor
from .models import ImageStatus, RunReport
from .orchestrator import Orchestrator
from .popular import provider_for
from .store import ensure_output_dir

ANALYSIS_FILE = "analysis.csv"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="binfinder",
        description="binfinder - find binaries in container images not installed "
                    "through a package manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze all existing diffs in the output directory
  binfinder --analyze

  # Scan the top 20 popular images from Docker Hub, 4 at a time
  binfinder --top 20 --workers 4

  # Scan specific images
  binfinder --images alpine:3.18,debian:12,centos:7

  # Private registry
  binfinder --top 5 --registry https://registry.example --user foo --password bar
        """,
    )
    parser.add_argument("--images", default="", help="Comma separated images on which to run diff")
    parser.add_argument("--top", type=int, default=0, help="Top N popular images to scan")
    parser.add_argument("--all-tags", action="store_true",
                        help="Scan every tag of each popular image, not just the first")
    parser.add_argument("--analyze", action="store_true",
                        help=f"Aggregate saved diffs into {ANALYSIS_FILE}")
    parser.add_argument("--output", help="Directory storing the diff files (default: data)")
    parser.add_argument("--workers", type=int, help="Images processed in parallel (default: 1)")
    parser.add_argument("--package-workers", type=int,
                        help="Parallel apk package queries per Alpine image (default: 8)")
    parser.add_argument("--timeout", type=float,
                        help="Per container command timeout in seconds, 0 disables (default: 600)")
    parser.add_argument("--linux-fallback", choices=FALLBACK_POLICIES,
                        help="Route release text naming only 'linux' to the RHEL scripts "
                             "or skip it (default: rhel)")
    parser.add_argument("--no-pull", action="store_true", help="Do not pull images before scanning")
    parser.add_argument("--registry", help="Registry to discover and pull images from")
    parser.add_argument("--user", help="Registry user")
    parser.add_argument("--password", help="Registry password")
    parser.add_argument("--dtr", action="store_true", help="Use the DTR API for discovery")
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_config(args: argparse.Namespace) -> Config:
    config = load_config(args.config) if args.config else Config()
    return config.replace(
        output_dir=args.output,
        workers=args.workers,
        package_workers=args.package_workers,
        command_timeout=args.timeout,
        generic_linux_fallback=args.linux_fallback,
        pull_images=False if args.no_pull else None,
        registry=args.registry,
        user=args.user,
        password=args.password,
    )


def run_analysis(config: Config, output_file: str = ANALYSIS_FILE) -> int:
    print(f"[*] Analyzing diffs in {config.output_dir}/ ...")
    rows = aggregate_directory(config.output_dir)
    export_csv(rows, output_file)
    print(f"[*] {len(rows)} distinct binaries saved to {output_file}")
    return 0


def discover_images(config: Config, top: int, all_tags: bool, dtr: bool) -> list[str]:
    provider = provider_for(config.registry, config.user, config.password, dtr)
    print(f"[*] Fetching top {top} images from {config.registry or 'Docker Hub'} ...")
    return provider.get_popular_images(top, all_tags)


def print_summary(report: RunReport) -> None:
    print()
    for outcome in report.outcomes:
        line = f"    {outcome.status.value:<10} {outcome.image}"
        if outcome.os_family:
            line += f" [{outcome.os_family.value}]"
        if outcome.status is ImageStatus.PERSISTED:
            line += (f" {outcome.unaccounted_count} unaccounted of "
                     f"{outcome.executable_count} executables")
        elif outcome.error:
            line += f" ({outcome.error})"
        print(line)
    print(f"[*] Persisted: {len(report.persisted)}, skipped: {len(report.skipped)}, "
          f"failed: {len(report.failed)}")


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not (args.images or args.top > 0 or args.analyze):
        parser.print_help()
        return 2

    try:
        config = build_config(args)
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"[*] binfinder v{__version__}")
    print(f"[*] Output: {config.output_dir}")
    try:
        ensure_output_dir(config.output_dir)
    except OutputDirError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if args.analyze:
        return run_analysis(config)

    executor = DockerExecutor(config)
    if not executor.is_daemon_running():
        print("ERROR: binfinder expects a docker daemon running on the machine", file=sys.stderr)
        return 1

    if config.user:
        try:
            executor.login(config.registry, config.user, config.password)
        except ExecutionFailure as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    if args.top > 0:
        try:
            images = discover_images(config, args.top, args.all_tags, args.dtr)
        except DiscoveryError as exc:
            print(f"ERROR: error fetching popular images: {exc}", file=sys.stderr)
            return 1
    else:
        images = [i for i in args.images.split(",") if i.strip()]

    if not images:
        print("[*] Got no image to scan for diff")
        return 0

    print(f"[*] Images: {len(images)}, workers: {config.workers}")
    try:
        report = Orchestrator(executor, config).run(images)
    except KeyboardInterrupt:
        print("\n[*] Interrupted", file=sys.stderr)
        return 130
    print_summary(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
