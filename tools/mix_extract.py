#!/usr/bin/env python3
"""
MIX Archive Inspector / Extractor

Shows header information, lists directory entries, and extracts files from
Westwood MIX archives (plain or encrypted).

MIX directories hold only filename hashes, so listings show keys. Pass a
names file (one filename per line) to label the keys you can identify.

Usage:
    python mix_extract.py info <archive>
    python mix_extract.py list <archive> [--names names.txt]
    python mix_extract.py extract <archive> NAME [NAME ...] [--output DIR]

Examples:
    python mix_extract.py info /path/to/REDALERT.MIX
    python mix_extract.py list /path/to/CONQUER.MIX --names conquer.txt
    python mix_extract.py extract /path/to/REDALERT.MIX TEMPERAT.PAL -o out
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from mix_data import KeyNames, MixArchive, MixError


def _read_names(path: Optional[str]) -> List[str]:
    if not path:
        return []
    with open(path, 'r', encoding='latin-1') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]


def cmd_info(mix: MixArchive, args) -> int:
    header = mix.header
    print(f"Archive: {mix.name}")
    print(f"Files: {header.file_count}")
    print(f"Data size: {header.data_size}")
    print(f"Data start: {mix.data_start}")
    print(f"Extended: {'yes' if header.is_extended else 'no'}")
    print(f"Encrypted: {'yes' if header.is_encrypted else 'no'}")
    print(f"Digest: {'yes' if header.has_digest else 'no'}")
    return 0


def cmd_list(mix: MixArchive, args) -> int:
    known = KeyNames(_read_names(args.names))

    print(f"{'Key':>10}  {'Offset':>10}  {'Size':>10}  Name")
    for entry in mix.entries():
        name = known.lookup(entry.key) or ''
        print(f"{entry.key:08X}  {entry.offset:>10}  {entry.size:>10}  {name}")
    print(f"\n{mix.file_count} files, {mix.data_size} bytes")
    return 0


def cmd_extract(mix: MixArchive, args) -> int:
    dest = Path(args.output)
    dest.mkdir(parents=True, exist_ok=True)

    missing = 0
    for name in args.names:
        content = mix.load(name)
        if content is None:
            print(f"Not found: {name}", file=sys.stderr)
            missing += 1
            continue
        out_path = dest / name.upper()
        out_path.write_bytes(content)
        print(f"  {name.upper()} ({len(content)} bytes)")

    return 1 if missing else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description='Westwood MIX archive inspector',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show header information
  python mix_extract.py info REDALERT.MIX

  # List entries, labelling known names
  python mix_extract.py list REDALERT.MIX --names names.txt

  # Extract files
  python mix_extract.py extract REDALERT.MIX TEMPERAT.PAL SNOW.PAL -o out
"""
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    info_parser = subparsers.add_parser('info', help='Show archive header information')
    info_parser.add_argument('archive', help='Path to the .mix file')
    info_parser.set_defaults(handler=cmd_info)

    list_parser = subparsers.add_parser('list', help='List directory entries')
    list_parser.add_argument('archive', help='Path to the .mix file')
    list_parser.add_argument('--names', help='File of known filenames, one per line')
    list_parser.set_defaults(handler=cmd_list)

    extract_parser = subparsers.add_parser('extract', help='Extract files by name')
    extract_parser.add_argument('archive', help='Path to the .mix file')
    extract_parser.add_argument('names', nargs='+', help='File names to extract')
    extract_parser.add_argument('--output', '-o', default='.', help='Output directory (default: .)')
    extract_parser.set_defaults(handler=cmd_extract)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        with MixArchive(args.archive) as mix:
            return args.handler(mix, args)
    except (MixError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
