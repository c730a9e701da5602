#!/usr/bin/env python3
"""
gen_bindings.py - binding generator entry point

Generates the scaffolding header and language bindings for one interface
description.

Usage:
    python scripts/gen_bindings.py INTERFACE.json [--out DIR] [--lang lua] [-j N] [-v]
"""

import argparse
import logging
import os
import sys

# Add scripts directory to path
script_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, script_dir)

from bridge_gen import Generator, InterfaceDefinition
from bridge_gen.errors import BridgeError


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Generate bindings from an interface description')
    parser.add_argument('interface', help='Path to the interface description (JSON)')
    parser.add_argument('--out', default='gen', help='Output directory')
    parser.add_argument('--lang', action='append', dest='languages',
                        help='Language to generate (repeatable, default: all)')
    parser.add_argument('-j', '--jobs', type=int, default=None,
                        help='Number of emitters to run concurrently')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        ci = InterfaceDefinition.load(args.interface)
        Generator(args.out).generate(ci, args.languages, args.jobs)
    except (BridgeError, ValueError) as e:
        print(f'error: {e}', file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
