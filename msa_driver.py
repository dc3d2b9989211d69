#!/usr/bin/env python3
"""
MSA Disk Driver Module.

This module decodes Magic Shadow Archiver (.msa) floppy disk archives into raw,
sector-linear Atari ST disk images (.st).

An MSA file starts with a 10-byte header describing the disk geometry, followed
by one block per track. Each block is either a verbatim copy of the track or a
Run-Length-Encoded stream.

Classes:
    DiskGeometry: Geometry read from the archive header.
    DecodedImage: Geometry plus the fully expanded image bytes.
    TrackBlock: Location of one encoded track block inside an archive.
    MSAImage: Sector-level access to a decoded archive file.

Functions:
    get_format(data): Return the geometry of an archive, or None if it is not MSA.
    read_header(data): Like get_format(), but raises FormatError with the reason.
    decode(data): Decode a complete archive held in memory.
    decode_track_data(data, out, sectors_per_track): Expand the track blocks.
    expand_rle(data, start, end): Expand a single RLE stream.
    iter_track_blocks(data, geometry): Walk the track blocks without expanding them.
    detect_format(filename): Load an archive file and return an MSAImage.
"""

import logging
import struct
from collections import namedtuple

logger = logging.getLogger(__name__)

# Constants
DISK_BYTES_PER_SECTOR = 512
MSA_RLE_MARKER = 0xE5
MSA_FILE_HEADER = 0x0E0F
MSA_HEADER_SIZE = 10
MAX_SECTORS_PER_TRACK = 11
MAX_TRACK = 81

_HEADER = struct.Struct('>5H')
_WORD = struct.Struct('>H')


class MSAError(ValueError):
    """Base class for all MSA decoding errors."""


class FormatError(MSAError):
    """The header is missing, has the wrong magic or describes an impossible disk."""


class TruncatedDataError(MSAError):
    """A track block or RLE run needs more bytes than the archive holds."""


class SizeMismatchError(MSAError):
    """A track block expanded to the wrong number of bytes."""


class DiskGeometry(namedtuple('DiskGeometry', [
        'sectors_per_track', 'sides', 'first_encoded_track', 'last_encoded_track'])):
    """
    Disk geometry stored in the MSA header.

    Attributes:
        sectors_per_track (int): Sectors on each track (1-11).
        sides (int): Number of sides minus one (0 or 1).
        first_encoded_track (int): First track stored in the archive.
        last_encoded_track (int): Last track stored in the archive.
    """
    __slots__ = ()

    @property
    def bytes_per_track(self):
        return self.sectors_per_track * DISK_BYTES_PER_SECTOR

    @property
    def side_count(self):
        return self.sides + 1

    @property
    def track_count(self):
        return self.last_encoded_track - self.first_encoded_track + 1

    @property
    def image_size(self):
        """Size in bytes of the decoded image."""
        return self.bytes_per_track * self.side_count * self.track_count


DecodedImage = namedtuple('DecodedImage', ['format', 'data'])

TrackBlock = namedtuple('TrackBlock', ['track', 'side', 'offset', 'size', 'compressed'])


def read_header(data):
    """
    Parse and validate the 10-byte MSA header.

    Args:
        data (bytes-like): Archive contents, at least the header.

    Returns:
        DiskGeometry: The validated geometry.

    Raises:
        FormatError: If the data is not a valid MSA header.
    """
    if len(data) < MSA_HEADER_SIZE:
        raise FormatError(f"Header needs {MSA_HEADER_SIZE} bytes, got {len(data)}")

    file_id, sectors, sides, first, last = _HEADER.unpack_from(data, 0)
    if file_id != MSA_FILE_HEADER:
        raise FormatError(f"Bad magic 0x{file_id:04X}, expected 0x{MSA_FILE_HEADER:04X}")
    if sectors < 1 or sectors > MAX_SECTORS_PER_TRACK:
        raise FormatError(f"Sectors per track out of range: {sectors}")
    if sides > 1:
        raise FormatError(f"Sides out of range: {sides}")
    if last > MAX_TRACK:
        raise FormatError(f"Last track out of range: {last}")
    if first > last:
        raise FormatError(f"First track {first} is after last track {last}")

    return DiskGeometry(sectors, sides, first, last)


def get_format(data):
    """
    Return the disk geometry of an MSA archive.

    Args:
        data (bytes-like): Archive contents.

    Returns:
        DiskGeometry: The geometry, or None if the data is not a valid MSA archive.
    """
    try:
        return read_header(data)
    except FormatError as e:
        logger.debug("Not an MSA archive: %s", e)
        return None


def _read_word(view, pos, limit):
    # Big-endian u16 at pos, which must end at or before limit
    if pos + 2 > limit:
        raise TruncatedDataError(f"Word at offset {pos} runs past offset {limit}")
    return _WORD.unpack_from(view, pos)[0]


def expand_rle(data, start=0, end=None, max_size=None):
    """
    Expand one RLE stream.

    A run is encoded as the marker byte 0xE5, the fill byte and a big-endian
    repeat count. Any other byte is copied as a literal.

    Args:
        data (bytes-like): Buffer holding the stream.
        start (int): Offset of the first encoded byte.
        end (int): Offset just past the last encoded byte (default: end of data).
        max_size (int): Largest allowed expanded size (default: unlimited).

    Returns:
        bytes: The expanded stream.

    Raises:
        TruncatedDataError: If the stream, or a run inside it, is cut short.
        SizeMismatchError: If the stream would expand past max_size. Nothing
            beyond max_size is ever written.
    """
    view = memoryview(data)
    if end is None:
        end = len(view)
    if end > len(view):
        raise TruncatedDataError(
            f"RLE stream ends at offset {end} but only {len(view)} bytes are available")

    out = bytearray()
    pos = start
    while pos < end:
        byte = view[pos]
        if byte == MSA_RLE_MARKER:
            if pos + 4 > end:
                raise TruncatedDataError(f"RLE run at offset {pos} crosses the end of its block")
            fill = view[pos + 1]
            count = _WORD.unpack_from(view, pos + 2)[0]
            if max_size is not None and len(out) + count > max_size:
                raise SizeMismatchError(
                    f"RLE run at offset {pos} expands past {max_size} bytes")
            out += bytes((fill,)) * count
            pos += 4
        else:
            if max_size is not None and len(out) >= max_size:
                raise SizeMismatchError(
                    f"Literal at offset {pos} expands past {max_size} bytes")
            out.append(byte)
            pos += 1
    return bytes(out)


def iter_track_blocks(data, geometry):
    """
    Walk the track blocks that follow the header.

    Args:
        data (bytes-like): Track data, starting right after the header.
        geometry (DiskGeometry): Geometry from the header.

    Yields:
        TrackBlock: One entry per block. offset points at the block payload.
    """
    view = memoryview(data)
    bytes_per_track = geometry.bytes_per_track
    pos = 0
    index = 0
    while pos < len(view):
        size = _read_word(view, pos, len(view))
        pos += 2
        if pos + size > len(view):
            raise TruncatedDataError(
                f"Track block at offset {pos - 2} declares {size} bytes, "
                f"only {len(view) - pos} remain")
        track = geometry.first_encoded_track + index // geometry.side_count
        side = index % geometry.side_count
        yield TrackBlock(track, side, pos, size, size != bytes_per_track)
        pos += size
        index += 1


def decode_track_data(data, out, sectors_per_track):
    """
    Expand the track blocks of an archive into a preallocated buffer.

    Args:
        data (bytes-like): Track data, starting right after the header.
        out (bytearray): Output buffer, sized for every track of the disk.
        sectors_per_track (int): Sectors per track from the header.

    Raises:
        TruncatedDataError: If the data ends inside a block, or before every
            track has been written.
        SizeMismatchError: If a block does not expand to exactly one track,
            or there are more blocks than the output has room for.
    """
    bytes_per_track = sectors_per_track * DISK_BYTES_PER_SECTOR
    view = memoryview(data)

    src_pos = 0
    dest_pos = 0
    while src_pos < len(view):
        block_size = _read_word(view, src_pos, len(view))
        src_pos += 2
        block_end = src_pos + block_size
        if block_end > len(view):
            raise TruncatedDataError(
                f"Track block at offset {src_pos - 2} declares {block_size} bytes, "
                f"only {len(view) - src_pos} remain")
        if dest_pos + bytes_per_track > len(out):
            raise SizeMismatchError(
                f"More track blocks than the {len(out) // bytes_per_track} tracks in the header")

        if block_size == bytes_per_track:
            # Stored verbatim, 0xE5 has no meaning here
            out[dest_pos:dest_pos + block_size] = view[src_pos:block_end]
            logger.debug("Track block at %d: raw, %d bytes", src_pos - 2, block_size)
        else:
            track = expand_rle(view, src_pos, block_end, max_size=bytes_per_track)
            if len(track) != bytes_per_track:
                raise SizeMismatchError(
                    f"Track block at offset {src_pos - 2} expands to {len(track)} bytes, "
                    f"expected {bytes_per_track}")
            out[dest_pos:dest_pos + bytes_per_track] = track
            logger.debug("Track block at %d: RLE, %d -> %d bytes",
                         src_pos - 2, block_size, bytes_per_track)

        src_pos = block_end
        dest_pos += bytes_per_track

    if dest_pos != len(out):
        raise TruncatedDataError(
            f"Archive ends after {dest_pos // bytes_per_track} of "
            f"{len(out) // bytes_per_track} tracks")


def decode(data):
    """
    Decode an MSA archive held in memory.

    Args:
        data (bytes-like): Complete archive contents.

    Returns:
        DecodedImage: The geometry and the raw disk image.

    Raises:
        FormatError: If the header is invalid.
        TruncatedDataError: If the track data is cut short.
        SizeMismatchError: If a track decodes to the wrong size.
    """
    geometry = read_header(data)
    logger.debug("MSA geometry: %s", geometry)

    out = bytearray(geometry.image_size)
    decode_track_data(memoryview(data)[MSA_HEADER_SIZE:], out, geometry.sectors_per_track)

    return DecodedImage(geometry, bytes(out))


class MSAImage:
    """
    Decoded MSA archive with sector-level access.

    Attributes:
        filename (str): Path to the archive file.
        file_size (int): Size of the archive in bytes.
        geometry (DiskGeometry): Geometry from the header.
        data (bytes): The decoded raw image.
    """
    def __init__(self, filename):
        self.filename = filename
        with open(filename, 'rb') as f:
            raw = f.read()
        self.file_size = len(raw)
        image = decode(raw)
        self.geometry = image.format
        self.data = image.data
        logger.info("Loaded %s: %s", filename, self.get_geometry())

    def __len__(self):
        return len(self.data)

    def _track_offset(self, track, side):
        geo = self.geometry
        if track < geo.first_encoded_track or track > geo.last_encoded_track:
            return None
        if side < 0 or side > geo.sides:
            return None
        index = (track - geo.first_encoded_track) * geo.side_count + side
        return index * geo.bytes_per_track

    def read_track(self, track, side):
        """
        Read a whole track.

        Args:
            track (int): Track number, as counted on the disk.
            side (int): Side number (0 or 1).

        Returns:
            bytes: The track data, or None if the track is not in the archive.
        """
        offset = self._track_offset(track, side)
        if offset is None:
            return None
        return self.data[offset:offset + self.geometry.bytes_per_track]

    def read_sector(self, track, side, sector):
        """
        Read a sector from the disk.

        Args:
            track (int): Track number, as counted on the disk.
            side (int): Side number (0 or 1).
            sector (int): Sector number, 1-based as on the Atari ST.

        Returns:
            bytes: 512 bytes of sector data, or None if not found.
        """
        if sector < 1 or sector > self.geometry.sectors_per_track:
            return None
        offset = self._track_offset(track, side)
        if offset is None:
            return None
        offset += (sector - 1) * DISK_BYTES_PER_SECTOR
        return self.data[offset:offset + DISK_BYTES_PER_SECTOR]

    def save_raw(self, filename):
        """Write the decoded image to a raw .st file."""
        with open(filename, 'wb') as f:
            f.write(self.data)

    def get_geometry(self):
        """Return a string describing the disk geometry."""
        geo = self.geometry
        return (f"MSA ({geo.track_count} Tracks {geo.first_encoded_track}-{geo.last_encoded_track}, "
                f"{geo.side_count} Sides, {geo.sectors_per_track} Sectors)")


def detect_format(filename):
    """
    Load an MSA archive file.

    Args:
        filename (str): Path to the archive.

    Returns:
        MSAImage: The decoded image.

    Raises:
        FormatError: If the file is not an MSA archive.
    """
    with open(filename, 'rb') as f:
        header = f.read(MSA_HEADER_SIZE)
    read_header(header)
    return MSAImage(filename)
