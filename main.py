#!/usr/bin/env python3
"""
jpg-recover: Entry Point.

Usage:
    python main.py /dev/sdb                  # files land in ./recovered00000.jpg ...
    python main.py card.img -p out/card_     # out/card_00000.jpg, out/card_00001.cr2 ...
    python main.py card.img --any-marker     # also try JPEGs without APP0/APP1

Existing files with coinciding names are overwritten without warning.
"""

import os
import sys
import json
import time
import logging
import argparse

from jpgrecover import __version__
from jpgrecover.materialize import OutputFileError
from jpgrecover.scanner import StreamScanner
from jpgrecover.signatures import DEFAULT_PREFIX, MAX_PREFIX_LENGTH


def _prefix(value: str) -> str:
    if len(value) > MAX_PREFIX_LENGTH:
        raise argparse.ArgumentTypeError(
            f"prefix is longer than {MAX_PREFIX_LENGTH} characters")
    return value


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}")
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jpg-recover",
        description="Recover JPEG and TIFF/CR2 images from raw bytes "
                    "(disk images, memory card dumps, damaged files).")
    parser.add_argument("image", help="Device or image file to scan")
    parser.add_argument("-p", "--prefix", type=_prefix, default=DEFAULT_PREFIX,
                        help="Output name prefix, may contain a directory "
                             f"(default: {DEFAULT_PREFIX})")
    parser.add_argument("-a", "--any-marker", action="store_true",
                        help="Accept JPEGs whose first marker is not APP0/APP1")
    parser.add_argument("--max-scan-size", type=_positive_int, default=8,
                        metavar="MB",
                        help="Give up on a JPEG whose scan data exceeds this "
                             "many MiB (default: 8)")
    parser.add_argument("--no-mmap", action="store_true",
                        help="Use buffered reads instead of memory mapping")
    parser.add_argument("--log", default="", metavar="FILE",
                        help="Write a JSON recovery log to FILE")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Also trace every candidate signature")
    parser.add_argument("-q", "--quiet", action="store_true",
                        help="Only print warnings and the summary")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    return parser


def cli_mode(args) -> int:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(stream=sys.stdout, level=level, format="%(message)s")
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(level)

    scanner = StreamScanner(prefix=args.prefix,
                            require_app_marker=not args.any_marker)
    scanner.set_max_scan_size(args.max_scan_size * 1024 * 1024)
    scanner.set_use_mmap(not args.no_mmap)

    try:
        fd = open(args.image, "rb")
    except OSError as e:
        print(f"{args.image}: {e.strerror or e}", file=sys.stderr)
        return 1

    print(f"Recovering images from {args.image}...")
    start = time.time()
    try:
        with fd:
            results = scanner.scan(fd)
    except OutputFileError as e:
        print(f"Error: {e}\nAborting.", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error reading {args.image}: {e}\nAborting.", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n  Aborted.")
        return 130
    elapsed = time.time() - start

    print(f"\n{'=' * 60}")
    print(f"  Done in {elapsed:.1f}s, found {len(results)} file(s)")
    print(f"{'=' * 60}")

    if results:
        by_ext: dict[str, list] = {}
        for rf in results:
            by_ext.setdefault(rf.extension, []).append(rf)
        print(f"  {'Ext':7s} {'Count':>6s}  {'Size':>10s}")
        print(f"  {'-'*7} {'-'*6}  {'-'*10}")
        for ext in sorted(by_ext):
            files = by_ext[ext]
            print(f"    .{ext:5s}  {len(files):4d}    "
                  f"{_fmt(sum(f.size for f in files)):>10s}")
        print(f"\n  Total: {_fmt(sum(rf.size for rf in results))}")

    if args.log:
        log_dir = os.path.dirname(args.log)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        with open(args.log, "w") as f:
            json.dump(scanner.get_recovery_log(), f, indent=2, default=str)
        print(f"  Log: {args.log}")
    print()
    return 0


def _fmt(n):
    s = float(n)
    for u in ("B", "KB", "MB", "GB"):
        if s < 1024:
            return f"{s:.1f} {u}"
        s /= 1024
    return f"{s:.1f} TB"


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return cli_mode(args)


if __name__ == "__main__":
    sys.exit(main())
