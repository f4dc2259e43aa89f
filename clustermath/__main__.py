"""
Main entry point for clustermath.

This module provides the command line interface: run a hierarchical or
two-step analysis on a CSV file, or serve the HTTP API.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

import pandas as pd
import yaml

from clustermath.analysis import HierarchicalAnalysis, TwoStepAnalysis
from clustermath.components.config import ConfigManager
from clustermath.components.server import ServerManager
from clustermath.errors import ClusteringError
from clustermath.math.case_matrix import CaseMatrix
from clustermath.math.options import HierarchicalOptions, TwoStepOptions
from clustermath.utils.general import to_jsonable

logger = logging.getLogger(__name__)


def setup_logging(level: str = 'INFO') -> None:
    """
    Set up logging.

    Args:
        level: Logging level
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler()
        ]
    )


def _names(value: Optional[str]) -> List[str]:
    return [name.strip() for name in value.split(',') if name.strip()] if value else []


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(description='Hierarchical and two-step cluster analysis')

    parser.add_argument(
        '--config',
        help='Path to configuration file'
    )

    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (defaults to the logging.level setting)'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    def add_data_args(sub):
        sub.add_argument('csv', help='CSV file with one case per row')
        sub.add_argument('--continuous', help='Comma-separated continuous variables')
        sub.add_argument('--categorical', help='Comma-separated categorical variables')
        sub.add_argument('--label', help='Column holding case labels')
        sub.add_argument('--output', help='Write the JSON result here instead of stdout')

    hierarchical = commands.add_parser('hierarchical', help='Hierarchical cluster analysis')
    add_data_args(hierarchical)
    hierarchical.add_argument('--method', help='Linkage method')
    hierarchical.add_argument('--measure', help='Proximity measure')
    hierarchical.add_argument('--outputs', help='Comma-separated outputs (default: all)')
    hierarchical.add_argument('--clusters', type=int, help='Report membership for this many clusters')

    twostep = commands.add_parser('twostep', help='Two-step cluster analysis')
    add_data_args(twostep)
    twostep.add_argument('--distance', choices=['log-likelihood', 'euclidean'], help='CF distance')
    twostep.add_argument('--clusters', type=int, help='Fixed number of clusters (default: automatic)')
    twostep.add_argument('--max-k', type=int, help='Largest cluster count for automatic selection')
    twostep.add_argument('--seed', type=int, help='Random seed for the CF-tree insertion order')
    twostep.add_argument('--noise', action='store_true', help='Dissolve small sub-clusters')

    serve = commands.add_parser('serve', help='Run the HTTP API')
    serve.add_argument('--port', type=int, help='Server port')
    serve.add_argument('--host', help='Server host')

    return parser.parse_args(argv)


def load_config_file(filepath: str) -> dict:
    """
    Load configuration from a file.

    Args:
        filepath: Path to configuration file

    Returns:
        Configuration dictionary
    """
    if filepath.endswith('.json'):
        with open(filepath, 'r') as f:
            return json.load(f)
    elif filepath.endswith('.yaml') or filepath.endswith('.yml'):
        with open(filepath, 'r') as f:
            return yaml.safe_load(f) or {}
    else:
        raise ValueError(f"Unsupported configuration file format: {filepath}")


def build_overrides(args: argparse.Namespace) -> dict:
    """
    Configuration overrides from the config file and command line flags.
    """
    overrides = load_config_file(args.config) if args.config else {}

    def put(section: str, key: str, value) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    if args.command == 'hierarchical':
        put('hierarchical', 'method', args.method)
        put('hierarchical', 'measure', args.measure)
        if args.clusters is not None:
            put('hierarchical', 'membership', {'mode': 'single', 'k': args.clusters})
    elif args.command == 'twostep':
        put('twostep', 'distance', args.distance)
        put('twostep', 'seed', args.seed)
        if args.noise:
            put('twostep', 'noise', True)
        clusters = {}
        if args.clusters is not None:
            clusters = {'mode': 'fixed', 'fixed-k': args.clusters}
        if args.max_k is not None:
            clusters['max-k'] = args.max_k
        if clusters:
            put('twostep', 'clusters', clusters)
    elif args.command == 'serve':
        put('server', 'port', args.port)
        put('server', 'host', args.host)

    return overrides


def read_cases(args: argparse.Namespace) -> CaseMatrix:
    """
    Read the CSV named on the command line into a CaseMatrix.
    """
    df = pd.read_csv(args.csv)
    continuous = _names(args.continuous)
    categorical = _names(args.categorical)
    if not continuous and not categorical:
        # numeric columns become continuous variables, the rest categorical
        skip = {args.label} if args.label else set()
        continuous = [c for c in df.columns if c not in skip and pd.api.types.is_numeric_dtype(df[c])]
        categorical = [c for c in df.columns if c not in skip and c not in continuous]
    return CaseMatrix.from_frame(df, continuous, categorical, args.label)


def write_result(result: dict, output: Optional[str]) -> None:
    text = json.dumps(to_jsonable(result), indent=2)
    if output:
        with open(output, 'w') as f:
            f.write(text)
        logger.info(f"Wrote result to {output}")
    else:
        sys.stdout.write(text + '\n')


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.
    """
    args = parse_args(argv)

    config = ConfigManager.get_config(build_overrides(args))

    setup_logging(args.log_level or config.get('logging.level', 'warn'))

    if args.command == 'serve':
        server = ServerManager.get_server(config)
        server.start()
        try:
            server.wait()
        except KeyboardInterrupt:
            pass
        finally:
            ServerManager.shutdown()
        return 0

    try:
        cases = read_cases(args)
        if args.command == 'hierarchical':
            options = HierarchicalOptions.from_config(config)
            outputs = _names(args.outputs) or None
            result = HierarchicalAnalysis(options).run(cases, outputs)
        else:
            options = TwoStepOptions.from_config(config)
            result = TwoStepAnalysis(options).run(cases)
    except ClusteringError as e:
        logger.error(f"Analysis failed: {e}")
        return 1

    write_result(result.to_dict(), args.output)
    return 0 if result.diagnostics.ok else 2


if __name__ == '__main__':
    sys.exit(main())
