#!/usr/bin/env python3
"""
MSAzap - Atari ST MSA Archive Inspector.

A utility to inspect MSA disk archives. Lists the encoded track blocks and
allows navigating through tracks and sectors of the decoded image with a hex dump.
"""

import sys
import os
import argparse
import logging

from msa_driver import (
    DISK_BYTES_PER_SECTOR, MSA_HEADER_SIZE, MSAError, detect_format, iter_track_blocks)

def hex_dump(data, base=0):
    """
    Hex dump of a sector, one 16-byte row per line.

    Rows are labelled with base + offset so dumps line up with the .st image.
    Repeated rows collapse into a single '*' line, like hexdump -C, since
    formatted sectors are mostly filler.
    """
    if not data:
        return "<No Data>"

    rows = []
    previous = None
    for pos in range(0, len(data), 16):
        row = bytes(data[pos:pos + 16])
        if row == previous:
            if rows[-1] != "*":
                rows.append("*")
            continue
        previous = row
        printable = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in row)
        rows.append(f"{base + pos:06X}  {row.hex(' ').upper():<47}  |{printable}|")
    return "\n".join(rows)

def sector_offset(geometry, track, side, sector):
    """Byte offset of a sector inside the decoded image."""
    index = (track - geometry.first_encoded_track) * geometry.side_count + side
    return index * geometry.bytes_per_track + (sector - 1) * DISK_BYTES_PER_SECTOR

def step_sector(geometry, track, side, sector, delta):
    """
    Move delta sectors forward or backward in storage order.

    Sectors run 1..N within a side, side 0 before side 1 within a track.
    Stops at the first and last sector of the archive.

    Returns:
        tuple: (track, side, sector)
    """
    spt = geometry.sectors_per_track
    per_track = spt * geometry.side_count
    index = ((track - geometry.first_encoded_track) * per_track
             + side * spt + (sector - 1) + delta)
    index = max(0, min(index, geometry.track_count * per_track - 1))

    track, rest = divmod(index, per_track)
    side, sector = divmod(rest, spt)
    return track + geometry.first_encoded_track, side, sector + 1

def block_listing(filename, geometry):
    """Return one line per encoded track block of the archive."""
    with open(filename, 'rb') as f:
        raw = f.read()

    lines = []
    for block in iter_track_blocks(memoryview(raw)[MSA_HEADER_SIZE:], geometry):
        kind = "RLE" if block.compressed else "raw"
        lines.append(f"T{block.track:02d}.{block.side}  offset {block.offset + MSA_HEADER_SIZE:6d}"
                     f"  size {block.size:5d}  {kind}")
    return lines

def main():
    # Allow overriding program name via environment variable (for wrapper scripts)
    prog_name = os.environ.get("MSA_PROG_NAME")

    parser = argparse.ArgumentParser(
        prog=prog_name,
        description="MSAzap - Atari ST MSA Archive Inspector"
    )
    parser.add_argument("file", nargs="?", help="MSA archive (.msa)")
    parser.add_argument("-b", "--blocks", action="store_true", help="List the encoded track blocks")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.WARNING
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    filename = args.file

    if not filename:
        # List files and exit
        files = [f for f in os.listdir('.') if f.lower().endswith('.msa')]

        if files:
            print("Error: No file specified.")
            print("\nAvailable archives in current directory:")
            for f in sorted(files):
                print(f"  {f}")
            print("\nUsage: msazap <filename>")
        else:
            print("Error: No file specified and no MSA archives found in current directory.")
            print("Usage: msazap <filename>")
        sys.exit(1)

    if not os.path.exists(filename):
        print(f"Error: File '{filename}' not found.")
        sys.exit(1)

    print(f"\nLoading {filename}...")
    try:
        disk = detect_format(filename)
    except (MSAError, OSError) as e:
        print(f"Error loading disk: {e}")
        sys.exit(1)

    geo = disk.geometry
    print(f"Format: {disk.get_geometry()}")
    print(f"Archive: {disk.file_size} bytes, Image: {len(disk)} bytes")

    if args.blocks:
        for line in block_listing(filename, geo):
            print(line)
        return

    track = geo.first_encoded_track
    side = 0
    sector = 1

    while True:
        print(f"\n--- Track {track} | Side {side} | Sector {sector} ---")
        data = disk.read_sector(track, side, sector)

        if data:
            print(hex_dump(data, sector_offset(geo, track, side, sector)))
        else:
            print("<Sector Not Found>")

        try:
            cmd = input("\n[N]ext, [P]rev, [J]ump, [Q]uit > ").lower().strip()
        except EOFError:
            break
        if not cmd:
            cmd = 'n'

        if cmd == 'q':
            break
        elif cmd == 'n':
            track, side, sector = step_sector(geo, track, side, sector, 1)
        elif cmd == 'p':
            track, side, sector = step_sector(geo, track, side, sector, -1)
        elif cmd == 'j':
            try:
                t_in = input(f"Track [{track}]: ")
                if t_in: track = int(t_in)

                s_in = input(f"Sector [{sector}]: ")
                if s_in: sector = int(s_in)

                sd_in = input(f"Side [{side}]: ")
                if sd_in: side = int(sd_in)
            except ValueError:
                print("Invalid input.")

if __name__ == "__main__":
    main()
