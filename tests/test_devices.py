import json
import os
from collections.abc import Iterator
from logging import Logger
from pathlib import Path

import pytest
from plumbum import local
from pytest_cases import parametrize

from kubevirt_csi.devices import (
    FsResizer,
    LsblkDeviceLister,
    MkfsFsMaker,
    SystemMounter,
    run,
)
from kubevirt_csi.exceptions import InternalError, InvalidArgumentError, NotFoundError


class FakeCommands:
    """Shell scripts shadowing the system tools.

    Each script logs its command line and prints the configured output.
    """

    def __init__(self, bin_dir: Path) -> None:
        self.bin_dir = bin_dir
        self.log = bin_dir / "calls.log"

    def add(self, name: str, stdout: str = "", stderr: str = "", retcode: int = 0):
        (self.bin_dir / f"{name}.out").write_text(stdout)
        (self.bin_dir / f"{name}.err").write_text(stderr)
        script = self.bin_dir / name
        script.write_text(
            "#!/bin/sh\n"
            f'echo "{name} $*" >> "{self.log}"\n'
            f'cat "{self.bin_dir}/{name}.out"\n'
            f'cat "{self.bin_dir}/{name}.err" >&2\n'
            f"exit {retcode}\n"
        )
        script.chmod(0o755)

    @property
    def calls(self) -> list[str]:
        if not self.log.exists():
            return []
        return self.log.read_text().splitlines()


@pytest.fixture
def commands(tmp_path: Path) -> Iterator[FakeCommands]:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    with local.env(PATH=f"{bin_dir}{os.pathsep}{local.env['PATH']}"):
        yield FakeCommands(bin_dir)


def test_run(commands: FakeCommands, logger: Logger) -> None:
    commands.add("lsblk", stdout="ok")
    assert run("lsblk", "--nodeps", logger=logger) == "ok"
    assert commands.calls == ["lsblk --nodeps"]


def test_run_failure(commands: FakeCommands, logger: Logger) -> None:
    commands.add("mount", stderr="bad device", retcode=32)
    with pytest.raises(InternalError) as e:
        run("mount", "/dev/sdb", "/mnt", logger=logger)
    assert e.value.message == "mount /dev/sdb /mnt failed: bad device"


def test_run_missing_command(commands: FakeCommands, logger: Logger) -> None:
    with pytest.raises(InternalError) as e:
        run("kubevirt-csi-missing-tool", logger=logger)
    assert "not found" in e.value.message


def test_list_block_devices(commands: FakeCommands, logger: Logger) -> None:
    commands.add(
        "lsblk",
        stdout=json.dumps(
            {
                "blockdevices": [
                    {"serial": None, "fstype": None, "name": "vda"},
                    {"serial": "uid-1", "fstype": "ext4", "name": "sda"},
                ]
            }
        ),
    )
    devices = LsblkDeviceLister(logger=logger).list_block_devices()
    assert [(i.serial, i.path, i.fstype) for i in devices] == [
        ("", "/dev/vda", ""),
        ("uid-1", "/dev/sda", "ext4"),
    ]
    assert commands.calls == ["lsblk --nodeps -nJo SERIAL,FSTYPE,NAME"]


def test_list_block_devices_invalid_output(
    commands: FakeCommands, logger: Logger
) -> None:
    commands.add("lsblk", stdout="not json")
    with pytest.raises(InternalError):
        LsblkDeviceLister(logger=logger).list_block_devices()


@parametrize(
    "fs_type, cmdline",
    [
        ("ext4", "mkfs -m 0 -F -t ext4 /dev/sdb"),
        ("xfs", "mkfs -t xfs -f /dev/sdb"),
    ],
)
def test_make_filesystem(
    commands: FakeCommands, fs_type: str, cmdline: str, logger: Logger
) -> None:
    commands.add("mkfs")
    MkfsFsMaker(logger=logger).make_filesystem("/dev/sdb", fs_type)
    assert commands.calls == [cmdline]


def test_make_unsupported_filesystem(commands: FakeCommands, logger: Logger) -> None:
    commands.add("mkfs")
    with pytest.raises(InvalidArgumentError):
        MkfsFsMaker(logger=logger).make_filesystem("/dev/sdb", "btrfs")
    assert commands.calls == []


def test_mount(commands: FakeCommands, logger: Logger) -> None:
    commands.add("mount")
    SystemMounter(logger=logger).mount("/dev/sdb", "/mnt", "xfs", ["nouuid", "ro"])
    assert commands.calls == ["mount -t xfs -o nouuid,ro /dev/sdb /mnt"]


def test_bind_mount(commands: FakeCommands, logger: Logger) -> None:
    commands.add("mount")
    SystemMounter(logger=logger).mount("/dev/sdb", "/target", "", ["bind"])
    assert commands.calls == ["mount -o bind /dev/sdb /target"]


def test_unmount_not_mounted(commands: FakeCommands, logger: Logger) -> None:
    commands.add("umount", stderr="umount: /mnt: not mounted.", retcode=32)
    SystemMounter(logger=logger).unmount("/mnt")
    assert commands.calls == ["umount /mnt"]


def test_unmount_busy(commands: FakeCommands, logger: Logger) -> None:
    commands.add("umount", stderr="umount: /mnt: target is busy.", retcode=32)
    with pytest.raises(InternalError):
        SystemMounter(logger=logger).unmount("/mnt")


@parametrize(
    "stdout, retcode, expected",
    [("/mnt /dev/sdb ext4 rw\n", 0, True), ("", 1, False)],
)
def test_is_mount_point(
    commands: FakeCommands, stdout: str, retcode: int, expected: bool, logger: Logger
) -> None:
    commands.add("findmnt", stdout=stdout, retcode=retcode)
    assert SystemMounter(logger=logger).is_mount_point("/mnt") == expected


def test_block_device_size(commands: FakeCommands, logger: Logger) -> None:
    commands.add("blockdev", stdout="3221225472\n")
    assert SystemMounter(logger=logger).block_device_size("/dev/sdb") == 3221225472
    assert commands.calls == ["blockdev --getsize64 /dev/sdb"]


def test_filesystem_stats(tmp_path, logger: Logger) -> None:
    stats = SystemMounter(logger=logger).filesystem_stats(str(tmp_path))
    assert stats.total_bytes > 0
    assert stats.used_bytes + stats.available_bytes <= stats.total_bytes


def test_path_checks(tmp_path, logger: Logger) -> None:
    mounter = SystemMounter(logger=logger)
    assert mounter.path_exists(str(tmp_path))
    assert not mounter.path_exists(str(tmp_path / "missing"))
    assert not mounter.is_block_device(str(tmp_path))


# Resize

GIB = 1024**3
EXT4_HEADER = """Filesystem volume name:   <none>
Block count:              262144
Block size:               4096
"""
XFS_STATFS = """fd.path = "/mnt"
geom.bsize = 4096
geom.datablocks = 262144
"""


def test_mounted_device(commands: FakeCommands, logger: Logger) -> None:
    commands.add("findmnt", stdout="/dev/sdb\n")
    assert FsResizer(logger=logger).mounted_device("/mnt") == "/dev/sdb"
    assert commands.calls == [
        "findmnt --noheadings --output SOURCE --mountpoint /mnt"
    ]


def test_mounted_device_not_found(commands: FakeCommands, logger: Logger) -> None:
    commands.add("findmnt", retcode=1)
    with pytest.raises(NotFoundError):
        FsResizer(logger=logger).mounted_device("/mnt")


@parametrize("device_size, expected", [(2 * GIB, True), (GIB, False)])
def test_need_resize_ext4(
    commands: FakeCommands, device_size: int, expected: bool, logger: Logger
) -> None:
    commands.add("blkid", stdout="ext4\n")
    commands.add("dumpe2fs", stdout=EXT4_HEADER)
    commands.add("blockdev", stdout=f"{device_size}\n")
    assert FsResizer(logger=logger).need_resize("/dev/sdb", "/mnt") == expected


@parametrize("device_size, expected", [(2 * GIB, True), (GIB, False)])
def test_need_resize_xfs(
    commands: FakeCommands, device_size: int, expected: bool, logger: Logger
) -> None:
    commands.add("blkid", stdout="xfs\n")
    commands.add("xfs_io", stdout=XFS_STATFS)
    commands.add("blockdev", stdout=f"{device_size}\n")
    assert FsResizer(logger=logger).need_resize("/dev/sdb", "/mnt") == expected
    assert "xfs_io -c statfs /mnt" in commands.calls


def test_need_resize_unsupported_filesystem(
    commands: FakeCommands, logger: Logger
) -> None:
    commands.add("blkid", stdout="btrfs\n")
    assert not FsResizer(logger=logger).need_resize("/dev/sdb", "/mnt")


@parametrize(
    "fs_type, tool, cmdline",
    [
        ("ext4", "resize2fs", "resize2fs /dev/sdb"),
        ("xfs", "xfs_growfs", "xfs_growfs -d /mnt"),
    ],
)
def test_resize(
    commands: FakeCommands, fs_type: str, tool: str, cmdline: str, logger: Logger
) -> None:
    commands.add("blkid", stdout=f"{fs_type}\n")
    commands.add(tool)
    FsResizer(logger=logger).resize("/dev/sdb", "/mnt")
    assert commands.calls[-1] == cmdline
