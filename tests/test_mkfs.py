import struct

import pytest

from xv6fs.layout import (
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    Superblock,
    inode_block,
)
from xv6fs.mkfs import NMETA, NINODES, ImageBuilder, build_image, main


def block(image, bn):
    return image[bn * BSIZE:(bn + 1) * BSIZE]


def inode_at(image, sb, inum):
    start = (inum % IPB) * DINODE_SIZE
    return DiskInode.unpack(block(image, inode_block(inum, sb))[start:])


def file_blocks(image, din):
    count = -(-din.size // BSIZE)
    blocks = list(din.addrs[:NDIRECT])
    if din.addrs[NDIRECT]:
        blocks += struct.unpack(f"<{NINDIRECT}I", block(image, din.addrs[NDIRECT]))
    return blocks[:count]


def file_content(image, din):
    data = b"".join(block(image, b) for b in file_blocks(image, din))
    return data[:din.size]


def dir_entries(image, din):
    data = file_content(image, din)
    entries = [DirEntry.unpack(data[i:i + DIRENT_SIZE]) for i in range(0, len(data), DIRENT_SIZE)]
    return [e for e in entries if e.inum != 0]


@pytest.fixture
def built(tmp_path):
    small = tmp_path / "README"
    small.write_bytes(b"hello, file system\n")
    big = tmp_path / "big"
    big_data = bytes(range(256)) * (20 * BSIZE // 256) + b"tail!!!"
    big.write_bytes(big_data)
    image_path = tmp_path / "fs.img"
    used = build_image(image_path, [small, big])
    image = image_path.read_bytes()
    sb = Superblock.unpack(block(image, 1))
    return image, sb, used, {"README": small.read_bytes(), "big": big_data}


def test_image_size_and_superblock(built):
    image, sb, _, _ = built
    assert len(image) == FSSIZE * BSIZE
    assert sb.size == FSSIZE
    assert sb.ninodes == NINODES
    assert sb.nlog == LOGSIZE
    assert sb.logstart == 2
    assert sb.inodestart == 2 + LOGSIZE
    assert sb.nblocks + NMETA == FSSIZE
    assert sb.inodestart < sb.bmapstart < NMETA


def test_root_directory_entries(built):
    image, sb, _, contents = built
    root = inode_at(image, sb, ROOTINO)
    assert root.type == FileType.DIR
    assert root.size % BSIZE == 0
    entries = dir_entries(image, root)
    assert [e.name for e in entries] == [".", ".."] + list(contents)
    assert entries[0].inum == ROOTINO
    assert entries[1].inum == ROOTINO


def test_file_contents_round_trip(built):
    image, sb, _, contents = built
    root = inode_at(image, sb, ROOTINO)
    for entry in dir_entries(image, root)[2:]:
        din = inode_at(image, sb, entry.inum)
        assert din.type == FileType.FILE
        assert din.nlink == 1
        assert file_content(image, din) == contents[entry.name]


def test_large_file_uses_indirect_block(built):
    image, sb, _, contents = built
    entry = dir_entries(image, inode_at(image, sb, ROOTINO))[-1]
    din = inode_at(image, sb, entry.inum)
    assert din.size == len(contents["big"])
    assert din.addrs[NDIRECT] >= NMETA


def test_data_blocks_are_distinct_and_outside_metadata(built):
    image, sb, used, _ = built
    blocks = []
    for entry in dir_entries(image, inode_at(image, sb, ROOTINO))[1:]:
        din = inode_at(image, sb, entry.inum)
        if entry.name == "..":
            continue
        blocks += file_blocks(image, din)
    assert len(blocks) == len(set(blocks))
    assert all(NMETA <= b < used for b in blocks)


def test_bitmap_marks_used_blocks(built):
    image, sb, used, _ = built
    bitmap = block(image, sb.bmapstart)
    for b in range(FSSIZE):
        bit = (bitmap[b // 8] >> (b % 8)) & 1
        assert bit == (1 if b < used else 0)


def test_long_names_are_truncated(tmp_path):
    long_name = tmp_path / ("n" * (DIRSIZ + 6))
    long_name.write_bytes(b"x")
    image_path = tmp_path / "fs.img"
    build_image(image_path, [long_name])
    image = image_path.read_bytes()
    sb = Superblock.unpack(block(image, 1))
    entries = dir_entries(image, inode_at(image, sb, ROOTINO))
    assert entries[-1].name == "n" * DIRSIZ


def test_builder_allocates_inodes_in_order(tmp_path):
    with ImageBuilder(tmp_path / "fs.img") as builder:
        first = builder.ialloc(FileType.DIR)
        second = builder.ialloc(FileType.FILE)
        assert first == ROOTINO
        assert second == first + 1
        assert builder.read_inode(second).type == FileType.FILE


def test_builder_iappend_round_trip(tmp_path):
    with ImageBuilder(tmp_path / "fs.img") as builder:
        inum = builder.ialloc(FileType.FILE)
        builder.iappend(inum, b"abc")
        builder.iappend(inum, b"d" * BSIZE)
        din = builder.read_inode(inum)
        assert din.size == 3 + BSIZE
        assert din.addrs[0] == NMETA
        assert din.addrs[1] == NMETA + 1


def test_write_inode_round_trip(tmp_path):
    with ImageBuilder(tmp_path / "fs.img") as builder:
        din = DiskInode(type=FileType.DEV, major=1, minor=2, nlink=3, size=7)
        builder.write_inode(5, din)
        assert builder.read_inode(5) == din


def test_iappend_beyond_max_file_raises(tmp_path):
    with ImageBuilder(tmp_path / "fs.img") as builder:
        inum = builder.ialloc(FileType.FILE)
        with pytest.raises(ValueError):
            builder.iappend(inum, bytes(MAXFILE * BSIZE + 1))


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 1
    assert "Usage: mkfs fs.img files..." in capsys.readouterr().err


def test_main_missing_input_fails(tmp_path, capsys):
    missing = tmp_path / "absent"
    assert main([str(tmp_path / "fs.img"), str(missing)]) == 1
    assert str(missing) in capsys.readouterr().err


def test_main_builds_image(tmp_path, capsys):
    source = tmp_path / "cat"
    source.write_bytes(b"meow")
    image_path = tmp_path / "fs.img"
    assert main([str(image_path), str(source)]) == 0
    out = capsys.readouterr().out
    assert out.startswith(f"nmeta {NMETA} ")
    assert "balloc: first" in out
    assert image_path.stat().st_size == FSSIZE * BSIZE