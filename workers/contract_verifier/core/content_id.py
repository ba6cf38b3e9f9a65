"""
Content identifier — derive the CID the chain records for a bytecode blob.

Two encodings:
  - RAW       CIDv1, codec ``raw``, multihash taken directly over the bytes.
  - DAG_CBOR  CIDv1, codec ``dag-cbor``, bytes first wrapped as a single
              DAG-CBOR byte string.

The hash function is part of the encoding, never chosen by the caller, so a
given (bytes, encoding) pair always yields the same identifier string.
Callers must use the encoding the chain used when the deployed bytecode was
stored, otherwise the comparison is meaningless.
"""
from enum import Enum

import dag_cbor
from multiformats import CID, multihash

# Multibase for string identifiers (``b`` prefix, lowercase RFC 4648 base32)
CID_BASE = "base32"
CID_VERSION = 1


class ContentEncoding(str, Enum):
    """Supported content-identifier encodings."""
    RAW = "raw"
    DAG_CBOR = "dag-cbor"

    @property
    def codec(self) -> str:
        return self.value

    @property
    def hash_function(self) -> str:
        # Versioned with the encoding; sha2-256 for every v1 encoding.
        return "sha2-256"


def encode_block(data: bytes, encoding: ContentEncoding) -> bytes:
    """Return the block bytes that get hashed for *encoding*."""
    if encoding == ContentEncoding.RAW:
        return bytes(data)
    if encoding == ContentEncoding.DAG_CBOR:
        return dag_cbor.encode(bytes(data))
    raise ValueError(f"Unsupported content encoding: {encoding!r}")


def compute_content_id(data: bytes, encoding: ContentEncoding = ContentEncoding.RAW) -> str:
    """
    Compute the CIDv1 string of *data* under *encoding*.

    Pure function: no I/O, no global state.
    """
    encoding = ContentEncoding(encoding)
    block = encode_block(data, encoding)
    digest = multihash.digest(block, encoding.hash_function)
    return str(CID(CID_BASE, CID_VERSION, encoding.codec, digest))


def content_ids_equal(a: str, b: str) -> bool:
    """
    Compare two CID strings by decoded value.

    Tolerates a different multibase on the stored side (e.g. a base58btc
    rendering of the same CIDv1). Unparseable input is never equal.
    """
    if a == b:
        return True
    try:
        return bytes(CID.decode(a)) == bytes(CID.decode(b))
    except (ValueError, KeyError):
        return False
