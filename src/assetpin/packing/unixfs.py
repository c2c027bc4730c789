"""UnixFS node encoding on top of dag-pb.

Only the subset needed to describe regular files and directories:
raw leaves for file data, ``File`` nodes for multi-chunk files and
``Directory`` nodes for folders. All CIDs are version 1 with sha2-256.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from multiformats import CID, multihash, varint

RAW = "raw"
DAG_PB = "dag-pb"
HASH_FUNCTION = "sha2-256"

# UnixFS Data.DataType
DIRECTORY = 1
FILE = 2

_VARINT = 0
_LENGTH_DELIMITED = 2


def _key(field_number: int, wire_type: int) -> bytes:
    return varint.encode((field_number << 3) | wire_type)


def _uint_field(field_number: int, value: int) -> bytes:
    return _key(field_number, _VARINT) + varint.encode(value)


def _bytes_field(field_number: int, data: bytes) -> bytes:
    return _key(field_number, _LENGTH_DELIMITED) + varint.encode(len(data)) + data


def make_cid(codec: str, block: bytes) -> CID:
    return CID("base32", 1, codec, multihash.digest(block, HASH_FUNCTION))


def placeholder_cid() -> CID:
    """A dag-pb CID with an all-zero digest, same encoded length as any real root."""
    return CID("base32", 1, DAG_PB, multihash.wrap(bytes(32), HASH_FUNCTION))


@dataclass(frozen=True)
class Link:
    """A named or anonymous edge to another block.

    ``tsize`` is the cumulative byte size of the linked sub-DAG and
    ``content_size`` the number of file bytes it represents.
    """

    cid: CID
    tsize: int
    content_size: int = 0
    name: Optional[str] = None

    def encode(self) -> bytes:
        out = _bytes_field(1, bytes(self.cid))
        if self.name is not None:
            out += _bytes_field(2, self.name.encode("utf-8"))
        out += _uint_field(3, self.tsize)
        return out


def unixfs_data(data_type: int, filesize: Optional[int] = None, blocksizes: Sequence[int] = ()) -> bytes:
    out = _uint_field(1, data_type)
    if filesize is not None:
        out += _uint_field(3, filesize)
    for size in blocksizes:
        out += _uint_field(4, size)
    return out


def encode_node(data: bytes, links: Sequence[Link]) -> bytes:
    """Canonical dag-pb encoding: links first, then data."""
    return b"".join(_bytes_field(2, link.encode()) for link in links) + _bytes_field(1, data)


def file_node(children: Sequence[Link]) -> bytes:
    return encode_node(
        unixfs_data(
            FILE,
            filesize=sum(child.content_size for child in children),
            blocksizes=[child.content_size for child in children],
        ),
        children,
    )


def directory_node(entries: Sequence[Link]) -> bytes:
    return encode_node(unixfs_data(DIRECTORY), entries)
