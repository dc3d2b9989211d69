import struct

import pytest


def build_archive(blocks, sectors=9, sides=0, first=0, last=0, magic=0x0E0F):
    """Assemble an MSA archive from already-encoded track blocks."""
    data = bytearray(struct.pack('>5H', magic, sectors, sides, first, last))
    for block in blocks:
        data += struct.pack('>H', len(block))
        data += block
    return bytes(data)


def raw_track(seed, sectors=9):
    """Deterministic, uncompressible-looking track contents."""
    return bytes((seed * 31 + i * 7) & 0xFF for i in range(sectors * 512))


@pytest.fixture
def make_archive():
    """Provides the archive builder."""
    return build_archive


@pytest.fixture
def make_track():
    """Provides the raw track generator."""
    return raw_track


@pytest.fixture
def two_sided_archive(tmp_path):
    """Writes a 2-track, 2-sided, 9-sector archive mixing raw and RLE blocks."""
    tracks = [raw_track(n) for n in range(3)]
    # Track 1 side 1: one run filling the whole track
    filled = bytes([0x4E]) * (9 * 512)
    blocks = tracks[:3] + [struct.pack('>BBH', 0xE5, 0x4E, 9 * 512)]
    path = tmp_path / "disk.msa"
    path.write_bytes(build_archive(blocks, sectors=9, sides=1, first=0, last=1))
    return path, tracks + [filled]
