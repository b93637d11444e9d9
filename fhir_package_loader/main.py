import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from fhir_package_loader.core.dependencies import get_default_cache_path, get_package_loader

logger = logging.getLogger(__name__)

EXAMPLES = """
Examples:
  fpl hl7.fhir.r5.core@current
  fpl hl7.fhir.r4.core@4.0.1 hl7.fhir.us.core@4.0.0 --save ./myProject
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fpl",
        description="Download FHIR packages into a FHIR package cache and load their definitions.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "packages",
        nargs="+",
        metavar="package",
        help="FHIR packages to load, as packageId@packageVersion",
    )
    parser.add_argument(
        "-s",
        "--save",
        type=Path,
        default=None,
        help="where to save packages to and load definitions from (default is the local FHIR cache)",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="output extra debugging information")
    parser.add_argument("-v", "--version", action="version", version="%(prog)s 0.1.0")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    packages = [package.replace("@", "#", 1) for package in args.packages]
    cache_path = args.save or get_default_cache_path()

    store = asyncio.run(get_package_loader().load_dependencies(packages, cache_path))

    loaded = store.all_packages()
    failed = store.all_unsuccessful_package_loads()
    logger.info(f"Loaded {len(loaded)} package(s) with {store.size()} definitions into {cache_path}")
    if failed:
        logger.error(f"Could not load: {', '.join(failed)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
