#!/usr/bin/env python3
"""
MSA FUSE Filesystem Implementation.

This module provides a read-only FUSE (Filesystem in Userspace) interface for
MSA disk archives. Mounting an .msa file shows a directory holding the decoded
raw disk image (NAME.st) and a geometry.txt summary, so emulators and tools that
only understand raw images can use the archive without converting it first.

Dependencies:
    - fusepy
    - msa_driver
"""

import os
import sys
import errno
import time
import logging
import argparse

# Configure FUSE library path for macOS with FUSE-T
if sys.platform == 'darwin' and not os.environ.get('FUSE_LIBRARY_PATH'):
    if os.path.exists('/usr/local/lib/libfuse-t.dylib'):
        os.environ['FUSE_LIBRARY_PATH'] = '/usr/local/lib/libfuse-t.dylib'

from fuse import FUSE, FuseOSError, Operations
from msa_driver import MSAError, detect_format

logger = logging.getLogger(__name__)


class MSA_FUSE(Operations):
    """
    FUSE Operations implementation for a decoded MSA archive.

    The archive is decoded once at mount time; every read is served from the
    decoded image held in memory.
    """
    def __init__(self, disk_image):
        self.disk_image = disk_image
        self.disk = detect_format(disk_image)
        self.mount_time = time.time()
        logger.info("Mounted %s (%s)", disk_image, self.disk.get_geometry())

        stem = os.path.splitext(os.path.basename(disk_image))[0]
        self.files = {
            f"{stem}.st": self.disk.data,
            "geometry.txt": self._geometry_text().encode('ascii'),
        }

    def _geometry_text(self):
        geo = self.disk.geometry
        lines = [
            f"Archive: {os.path.basename(self.disk_image)}",
            f"Format: {self.disk.get_geometry()}",
            f"Sectors per track: {geo.sectors_per_track}",
            f"Sides: {geo.side_count}",
            f"First track: {geo.first_encoded_track}",
            f"Last track: {geo.last_encoded_track}",
            f"Image size: {geo.image_size}",
        ]
        return "\n".join(lines) + "\n"

    def _lookup(self, path):
        content = self.files.get(path[1:])
        if content is None:
            raise FuseOSError(errno.ENOENT)
        return content

    def getattr(self, path, fh=None):
        if path == '/':
            return dict(st_mode=(0o40555), st_nlink=2,
                        st_ctime=self.mount_time, st_mtime=self.mount_time, st_atime=self.mount_time)

        content = self._lookup(path)
        return dict(st_mode=(0o100444), st_nlink=1, st_size=len(content),
                    st_ctime=self.mount_time, st_mtime=self.mount_time, st_atime=self.mount_time)

    def readdir(self, path, fh):
        if path != '/':
            raise FuseOSError(errno.ENOTDIR)
        return ['.', '..'] + sorted(self.files)

    def open(self, path, flags):
        self._lookup(path)
        if (flags & os.O_WRONLY) or (flags & os.O_RDWR):
            raise FuseOSError(errno.EROFS)
        return 0

    def read(self, path, length, offset, fh):
        content = self._lookup(path)
        return bytes(content[offset:offset + length])

    def create(self, path, mode, fi=None):
        raise FuseOSError(errno.EROFS)

    def write(self, path, buf, offset, fh):
        raise FuseOSError(errno.EROFS)

    def truncate(self, path, length, fh=None):
        raise FuseOSError(errno.EROFS)

    def unlink(self, path):
        raise FuseOSError(errno.EROFS)

    def statfs(self, path):
        size = sum(len(c) for c in self.files.values())
        blocks = (size + 511) // 512
        return dict(f_bsize=512, f_frsize=512, f_blocks=blocks, f_bfree=0, f_bavail=0)

    def access(self, path, mode):
        if path != '/':
            self._lookup(path)
        if mode & os.W_OK:
            raise FuseOSError(errno.EROFS)
        return 0


def main():
    parser = argparse.ArgumentParser(
        prog=os.environ.get("MSA_PROG_NAME"),
        description="Mount an Atari ST MSA disk archive as a read-only FUSE filesystem.",
        epilog="Example: msamount disk.msa ./mnt"
    )
    parser.add_argument("disk_image", help="Path to the MSA archive (.msa)")
    parser.add_argument("mountpoint", help="Directory to mount the filesystem")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--foreground", "-f", action="store_true", help="Run in foreground (default: False)")

    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if not os.path.isdir(args.mountpoint):
        print(f"Error: Mount point '{args.mountpoint}' does not exist.", file=sys.stderr)
        sys.exit(1)

    try:
        operations = MSA_FUSE(args.disk_image)
    except (MSAError, OSError) as e:
        print(f"Error loading {args.disk_image}: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        FUSE(operations, args.mountpoint, foreground=args.foreground, ro=True, nothreads=True)
    except RuntimeError as e:
        print(f"Failed to mount: {e}", file=sys.stderr)
        print("Ensure FUSE-T or macFUSE is installed and libfuse is available.", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
