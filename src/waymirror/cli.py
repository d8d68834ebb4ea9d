"""
Command-line entry point for waymirror.
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from waymirror import __version__
from waymirror.core.controller import MirrorController, RunConfig
from waymirror.core.errors import ConfigurationError
from waymirror.core.logger import initialize_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="waymirror",
        description="Download an entire website from the Wayback Machine.",
        formatter_class=lambda prog: argparse.ArgumentDefaultsHelpFormatter(prog, width=90),
    )
    parser.add_argument("base_url", help="URL or domain to mirror, e.g. http://example.com")
    parser.add_argument("-d", "--directory", default=None,
                        help="output directory (default: websites/<host>/)")
    parser.add_argument("-s", "--all-timestamps", action="store_true",
                        help="download every snapshot, one directory per timestamp")
    parser.add_argument("-f", "--from", dest="from_timestamp", default=None,
                        help="only snapshots at or after this timestamp (e.g. 20060716231334)")
    parser.add_argument("-t", "--to", dest="to_timestamp", default=None,
                        help="only snapshots at or before this timestamp")
    parser.add_argument("-e", "--exact-url", action="store_true",
                        help="download only the exact URL, not the whole site")
    parser.add_argument("-o", "--only", dest="only_filter", default=None,
                        help="restrict to URLs containing this string, or matching /regex/")
    parser.add_argument("-x", "--exclude", dest="exclude_filter", default=None,
                        help="skip URLs containing this string, or matching /regex/")
    parser.add_argument("-a", "--all", dest="capture_all", action="store_true",
                        help="also download error pages and redirects (30x, 40x, 50x)")
    parser.add_argument("-l", "--list", dest="list_only", action="store_true",
                        help="print the download plan as JSON and exit")
    parser.add_argument("-m", "--maximum-snapshot", dest="maximum_pages", type=int, default=100,
                        help="maximum number of capture-index pages to request")
    parser.add_argument("-c", "--concurrency", type=int, default=1,
                        help="number of files to download at a time")
    parser.add_argument("-r", "--rewritten", action="store_true",
                        help="download archive-rewritten pages instead of original bytes")
    parser.add_argument("--rewrite-links", action="store_true",
                        help="rewrite links in saved HTML/CSS/JS to point at the local mirror")
    parser.add_argument("--ignore-url-params", action="store_true",
                        help="treat URLs that differ only in query string as the same file")
    parser.add_argument("--keep-params", default="",
                        help="comma-separated query parameters to keep when normalizing URLs")
    parser.add_argument("--reset", action="store_true",
                        help="delete saved run state and start over")
    parser.add_argument("--keep", dest="keep_state", action="store_true",
                        help="keep run state files after a successful run")
    parser.add_argument("--timeout", type=float, default=30, help="request timeout in seconds")
    parser.add_argument("--log-dir", default="logs", help="directory for log files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    keep_params = tuple(p.strip() for p in args.keep_params.split(',') if p.strip())
    return RunConfig(
        base_url=args.base_url,
        directory=args.directory,
        exact_url=args.exact_url,
        all_timestamps=args.all_timestamps,
        from_timestamp=args.from_timestamp,
        to_timestamp=args.to_timestamp,
        only_filter=args.only_filter,
        exclude_filter=args.exclude_filter,
        capture_all=args.capture_all,
        maximum_pages=args.maximum_pages,
        concurrency=args.concurrency,
        timeout=args.timeout,
        rewritten=args.rewritten,
        rewrite_links=args.rewrite_links,
        ignore_url_params=args.ignore_url_params,
        keep_params=keep_params,
        reset=args.reset,
        keep_state=args.keep_state,
        failure_report=os.path.join(args.log_dir, "failures.txt"),
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run waymirror from the command line.

    Returns:
        0 on a clean run, 1 if any file failed, 2 on invalid configuration
    """
    args = build_parser().parse_args(argv)
    logger = initialize_logging(args.log_dir)

    try:
        controller = MirrorController(config_from_args(args), logger=logger)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if args.list_only:
        print(json.dumps(controller.list_files(), indent=2, ensure_ascii=False))
        return 0

    try:
        controller.run()
    except KeyboardInterrupt:
        logger.warning("Interrupted; state files kept so the run can resume")
        return 1

    return 1 if controller.failures.has_failures() else 0


if __name__ == "__main__":
    sys.exit(main())
