"""
Command-line interface for RiSCAN Pro projects.

Usage:
    riscan-pro info PROJECT [--format json|yaml] [--output FILE]
    riscan-pro sop PROJECT OUT_DIR [--frozen]
    riscan-pro pop PROJECT [OUT_FILE]
    riscan-pro colorize CONFIG
"""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from .colorizer import Colorizer
from .config import Config
from .errors import RiscanProError
from .export import REPORT_FORMATS, dump_report, export_sops, save_report, write_matrix
from .infratec import InfratecImageSource
from .rsp import read_project

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    # stdout is reserved for command output (matrices, reports)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)]
    )


def load_points(path: str) -> np.ndarray:
    """
    Load an Nx3 array of points from a CSV or whitespace-separated file.

    Blank lines and lines starting with '#' are skipped; columns after the
    third are ignored.

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if a line holds fewer than three numbers
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point file not found: {path}")

    points = []
    with open(path, 'r') as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            words = [w for w in re.split(r'[,;\s]+', line) if w]
            try:
                points.append([float(w) for w in words[:3]])
            except ValueError:
                raise ValueError(f"{path}:{line_number}: invalid point: {line}") from None
            if len(points[-1]) != 3:
                raise ValueError(f"{path}:{line_number}: expected x y z, got: {line}")

    logger.info(f"Loaded {len(points)} points from {path}")
    return np.array(points, dtype=np.float64).reshape(-1, 3)


def run_colorize(config: Config) -> Tuple[int, int]:
    """
    Color the configured point file and write ``x y z value`` rows.

    The output file is only written once every point has been processed.

    Returns:
        (colored points, total points)
    """
    project = read_project(config.project)
    colorizer = Colorizer(project, InfratecImageSource(project))
    candidates = config.resolve_candidates(project) or colorizer.candidates_for()
    points = load_points(config.points)

    rows = []
    colored = 0
    for point, result in zip(points, colorizer.colorize_points(points, candidates, config.point_frame)):
        if result.colorized:
            colored += 1
            value = result.color
        elif config.fill_value is not None:
            value = config.fill_value
        else:
            continue
        rows.append(f"{point[0]} {point[1]} {point[2]} {value}\n")

    with open(config.output, 'w') as f:
        f.writelines(rows)

    if colored < len(points):
        logger.warning(f"{len(points) - colored} of {len(points)} points could not be colored")
    logger.info(f"Colored points written to {config.output}")
    return colored, len(points)


def _info(args) -> int:
    project = read_project(args.project)
    if args.output:
        save_report(project, args.output, args.format)
    else:
        sys.stdout.write(dump_report(project, args.format))
    return 0


def _sop(args) -> int:
    project = read_project(args.project)
    export_sops(project, args.out_dir, frozen_only=args.frozen)
    return 0


def _pop(args) -> int:
    project = read_project(args.project)
    write_matrix(args.out_file if args.out_file else sys.stdout, project.pop)
    return 0


def _colorize(args) -> int:
    config = Config.from_yaml(args.config)
    colored, total = run_colorize(config)
    print(f"Colored {colored} of {total} points")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='riscan-pro',
        description='Read RiSCAN Pro projects, export their transforms and color points',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
    # Describe a project as YAML
    riscan-pro info data/project.RiSCAN --format yaml

    # Export the SOPs of frozen scan positions
    riscan-pro sop data/project.RiSCAN sops/ --frozen

    # Color points as configured
    riscan-pro colorize colorize.yaml -v
'''
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    info = subparsers.add_parser('info', help='Print a structured project report')
    info.add_argument('project', help='Path to a .RiSCAN directory or project.rsp file')
    info.add_argument('--format', '-f', choices=REPORT_FORMATS, default='json',
                      help='Report format (default: json)')
    info.add_argument('--output', '-o', default=None,
                      help='Write the report to this file instead of stdout')
    info.set_defaults(func=_info)

    sop = subparsers.add_parser('sop', help='Write scan position SOP matrices')
    sop.add_argument('project', help='Path to a .RiSCAN directory or project.rsp file')
    sop.add_argument('out_dir', help='Directory for <scan position>.txt files')
    sop.add_argument('--frozen', action='store_true',
                     help='Only export frozen scan positions')
    sop.set_defaults(func=_sop)

    pop = subparsers.add_parser('pop', help='Write the project POP matrix')
    pop.add_argument('project', help='Path to a .RiSCAN directory or project.rsp file')
    pop.add_argument('out_file', nargs='?', default=None,
                     help='Output file (default: stdout)')
    pop.set_defaults(func=_pop)

    colorize = subparsers.add_parser('colorize', help='Color points from scan position images')
    colorize.add_argument('config', help='Path to YAML configuration file')
    colorize.set_defaults(func=_colorize)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    try:
        return args.func(args)
    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except RiscanProError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
