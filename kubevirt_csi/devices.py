"""Node capabilities: block device discovery, filesystem creation, resize and mounts.

The node service only talks to the operating system through these interfaces.
Production implementations run the util-linux and filesystem tools.
"""

import json
import os
import re
import stat
from abc import ABC, abstractmethod
from logging import Logger

from plumbum import CommandNotFound, ProcessExecutionError, local
from plumbum.commands.base import BoundCommand

from kubevirt_csi.exceptions import InternalError, InvalidArgumentError, NotFoundError
from kubevirt_csi.models.node import BlockDevice, VolumeStats

SUPPORTED_FILESYSTEMS = ("ext4", "xfs")


def command(name: str, *args: str) -> BoundCommand:
    """Return the command bound to its arguments.

    Raises:
        InternalError when the executable is not in the PATH.

    """
    try:
        return local[name][args]
    except CommandNotFound as e:
        raise InternalError(f"Command {name} not found") from e


def run(name: str, *args: str, logger: Logger) -> str:
    """Run a command and return its stdout.

    Raises:
        InternalError when the command is missing or fails.

    """
    executable = command(name, *args)
    logger.debug("Running: %s", executable)
    try:
        return executable()
    except ProcessExecutionError as e:
        output = e.stderr if e.stderr else e.stdout
        cmdline = " ".join([name, *args])
        raise InternalError(f"{cmdline} failed: {output.strip()}") from e


class DeviceLister(ABC):
    @abstractmethod
    def list_block_devices(self) -> list[BlockDevice]:
        """Return the block devices visible on the node."""


class FsMaker(ABC):
    @abstractmethod
    def make_filesystem(self, device_path: str, fs_type: str) -> None:
        """Create a filesystem of the given type on a device."""


class Resizer(ABC):
    @abstractmethod
    def mounted_device(self, mount_path: str) -> str:
        """Return the device mounted on a path.

        Raises:
            NotFoundError if nothing is mounted there.

        """

    @abstractmethod
    def need_resize(self, device_path: str, mount_path: str) -> bool:
        """Return True when the device is larger than its filesystem."""

    @abstractmethod
    def resize(self, device_path: str, mount_path: str) -> None:
        """Grow the filesystem mounted on mount_path to the device size."""


class Mounter(ABC):
    @abstractmethod
    def mount(
        self, source: str, target: str, fs_type: str, options: list[str]
    ) -> None:
        """Mount source on target. An empty fs_type lets mount detect it."""

    @abstractmethod
    def unmount(self, target: str) -> None:
        """Unmount target. Unmounting a path not mounted succeeds."""

    @abstractmethod
    def path_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def is_mount_point(self, path: str) -> bool:
        pass

    @abstractmethod
    def is_block_device(self, path: str) -> bool:
        pass

    @abstractmethod
    def block_device_size(self, path: str) -> int:
        """Return the size of a block device in bytes."""

    @abstractmethod
    def filesystem_stats(self, path: str) -> VolumeStats:
        """Return bytes and inodes usage of the filesystem mounted on path."""


def block_device_size(path: str, *, logger: Logger) -> int:
    output = run("blockdev", "--getsize64", path, logger=logger).strip()
    try:
        return int(output)
    except ValueError as e:
        raise InternalError(f"Failed to parse size {output} of {path}") from e


class LsblkDeviceLister(DeviceLister):
    """List block devices with lsblk."""

    def __init__(self, *, logger: Logger) -> None:
        self.logger = logger

    def list_block_devices(self) -> list[BlockDevice]:
        output = run(
            "lsblk", "--nodeps", "-nJo", "SERIAL,FSTYPE,NAME", logger=self.logger
        )
        try:
            data = json.loads(output)
        except ValueError as e:
            raise InternalError(f"Invalid lsblk output: {output!r}") from e
        devices = [
            BlockDevice(
                serial=item.get("serial") or "",
                path=f"/dev/{item['name']}",
                fstype=item.get("fstype") or "",
            )
            for item in data.get("blockdevices", [])
        ]
        self.logger.debug("Block devices: %s", devices)
        return devices


class MkfsFsMaker(FsMaker):
    """Create filesystems with mkfs."""

    def __init__(self, *, logger: Logger) -> None:
        self.logger = logger

    def make_filesystem(self, device_path: str, fs_type: str) -> None:
        if fs_type == "ext4":
            args = ("-m", "0", "-F", "-t", "ext4", device_path)
        elif fs_type == "xfs":
            args = ("-t", "xfs", "-f", device_path)
        else:
            raise InvalidArgumentError(
                f"Filesystem {fs_type} not supported, only xfs and ext4"
            )
        self.logger.info("Creating %s filesystem on %s", fs_type, device_path)
        run("mkfs", *args, logger=self.logger)


class FsResizer(Resizer):
    """Grow ext4 filesystems with resize2fs and xfs ones with xfs_growfs.

    A filesystem needs a resize when the device is larger than the filesystem by
    more than one filesystem block.
    """

    def __init__(self, *, logger: Logger) -> None:
        self.logger = logger

    def mounted_device(self, mount_path: str) -> str:
        rc, stdout, _ = command(
            "findmnt", "--noheadings", "--output", "SOURCE", "--mountpoint", mount_path
        ).run(retcode=None)
        device = stdout.strip()
        if rc != 0 or device == "":
            raise NotFoundError(f"Device path for {mount_path} not found")
        return device

    def _filesystem_type(self, device_path: str) -> str:
        return run(
            "blkid", "-p", "-s", "TYPE", "-o", "value", device_path, logger=self.logger
        ).strip()

    def _ext_size(self, device_path: str) -> tuple[int, int]:
        output = run("dumpe2fs", "-h", device_path, logger=self.logger)
        count = re.search(r"^Block count:\s+(\d+)", output, re.MULTILINE)
        size = re.search(r"^Block size:\s+(\d+)", output, re.MULTILINE)
        if count is None or size is None:
            raise InternalError(f"Failed to read the filesystem size of {device_path}")
        return int(count.group(1)), int(size.group(1))

    def _xfs_size(self, mount_path: str) -> tuple[int, int]:
        output = run("xfs_io", "-c", "statfs", mount_path, logger=self.logger)
        count = re.search(r"^geom\.datablocks = (\d+)", output, re.MULTILINE)
        size = re.search(r"^geom\.bsize = (\d+)", output, re.MULTILINE)
        if count is None or size is None:
            raise InternalError(f"Failed to read the filesystem size of {mount_path}")
        return int(count.group(1)), int(size.group(1))

    def need_resize(self, device_path: str, mount_path: str) -> bool:
        fs_type = self._filesystem_type(device_path)
        if fs_type == "ext4":
            blocks, block_size = self._ext_size(device_path)
        elif fs_type == "xfs":
            blocks, block_size = self._xfs_size(mount_path)
        else:
            self.logger.info(
                "Resize of %s filesystem on %s not supported", fs_type, device_path
            )
            return False
        device_size = block_device_size(device_path, logger=self.logger)
        return device_size > blocks * block_size + block_size

    def resize(self, device_path: str, mount_path: str) -> None:
        fs_type = self._filesystem_type(device_path)
        self.logger.info("Resizing %s filesystem on %s", fs_type, device_path)
        if fs_type == "ext4":
            run("resize2fs", device_path, logger=self.logger)
        elif fs_type == "xfs":
            run("xfs_growfs", "-d", mount_path, logger=self.logger)
        else:
            raise InternalError(
                f"Resize of {fs_type} filesystem on {device_path} not supported"
            )


class SystemMounter(Mounter):
    """Mount and inspect paths with mount, umount, findmnt and blockdev."""

    def __init__(self, *, logger: Logger) -> None:
        self.logger = logger

    def mount(
        self, source: str, target: str, fs_type: str, options: list[str]
    ) -> None:
        args = []
        if fs_type:
            args += ["-t", fs_type]
        if options:
            args += ["-o", ",".join(options)]
        self.logger.info("Mounting %s on %s", source, target)
        run("mount", *args, source, target, logger=self.logger)

    def unmount(self, target: str) -> None:
        self.logger.info("Unmounting %s", target)
        try:
            run("umount", target, logger=self.logger)
        except InternalError as e:
            if "not mounted" not in e.message:
                raise
            self.logger.info("%s was not mounted", target)

    def path_exists(self, path: str) -> bool:
        return os.path.lexists(path)

    def is_mount_point(self, path: str) -> bool:
        rc, stdout, _ = command("findmnt", "--noheadings", "--mountpoint", path).run(
            retcode=None
        )
        return rc == 0 and stdout.strip() != ""

    def is_block_device(self, path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError as e:
            raise InternalError(f"Failed to stat {path}: {e!s}") from e

    def block_device_size(self, path: str) -> int:
        return block_device_size(path, logger=self.logger)

    def filesystem_stats(self, path: str) -> VolumeStats:
        try:
            st = os.statvfs(path)
        except OSError as e:
            raise InternalError(f"Failed to statfs {path}: {e!s}") from e
        return VolumeStats(
            total_bytes=st.f_blocks * st.f_frsize,
            available_bytes=st.f_bavail * st.f_frsize,
            used_bytes=max(st.f_blocks - st.f_bfree, 0) * st.f_frsize,
            total_inodes=st.f_files,
            available_inodes=st.f_ffree,
            used_inodes=max(st.f_files - st.f_ffree, 0),
        )
