#!/usr/bin/env python3
"""Convert MSA (Magic Shadow Archiver) archive to raw .st disk image."""

import sys
import os
import argparse
import logging

from msa_driver import MSAError, detect_format

def default_output(msa_file):
    """Return the .st filename next to the archive."""
    return os.path.splitext(msa_file)[0] + ".st"

def msa_to_st(msa_file, st_file, force=False):
    """
    Decode an MSA archive and write the raw image.

    Returns:
        DiskGeometry: Geometry of the converted disk.
    """
    if os.path.exists(st_file) and not force:
        raise FileExistsError(f"{st_file} exists, use --force to overwrite")

    disk = detect_format(msa_file)
    disk.save_raw(st_file)
    print(f"{disk.get_geometry()}")
    print(f"Wrote {len(disk)} bytes to {st_file}")
    return disk.geometry

def main():
    parser = argparse.ArgumentParser(
        prog=os.environ.get("MSA_PROG_NAME"),
        description="Convert an MSA disk archive to a raw .st image."
    )
    parser.add_argument("input", help="MSA archive (.msa)")
    parser.add_argument("output", nargs="?", help="Raw image to write (default: input with .st extension)")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing output file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every track block")

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    output = args.output or default_output(args.input)
    try:
        msa_to_st(args.input, output, force=args.force)
    except (MSAError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == '__main__':
    main()
