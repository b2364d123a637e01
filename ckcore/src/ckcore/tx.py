"""
Raw Bitcoin transaction codec.

Parses and re-serializes raw transactions (legacy and SegWit) and embeds or
extracts the metadata payloads the meta-protocol carries in transaction
outputs: a null-data (OP_RETURN) output, or a bare 1-of-3 multisig output used
purely as a data container.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ckcore.constants import (
    MAX_OP_RETURN_PAYLOAD,
    MULTISIG_DATA_HEX_WIDTH,
    MULTISIG_DATA_OUTPUT_VALUE,
    OP_1,
    OP_3,
    OP_CHECKMULTISIG,
    OP_RETURN,
    SATOSHI,
)


class TxCodecError(ValueError):
    """Raised when a raw transaction cannot be parsed or modified."""

    pass


@dataclass
class TxInput:
    """Transaction input. Carried through unchanged by the metadata helpers."""

    txid: str
    vout: int
    scriptsig: str = ""
    sequence: int = 0xFFFFFFFF


@dataclass
class TxOutput:
    """Transaction output: value in sats and scriptPubKey hex."""

    value: int
    script: str

    def is_null_data(self) -> bool:
        return self.script[:2].lower() == f"{OP_RETURN:02x}"


@dataclass
class RawTransaction:
    version: int
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    witnesses: list[list[bytes]] = field(default_factory=list)
    locktime: int = 0
    segwit: bool = False

    def serialize(self) -> bytes:
        """Serialize transaction to bytes, keeping the SegWit layout it was parsed with."""
        result = struct.pack("<I", self.version)
        if self.segwit:
            result += bytes([0x00, 0x01])

        result += varint(len(self.inputs))
        for inp in self.inputs:
            result += bytes.fromhex(inp.txid)[::-1]
            result += struct.pack("<I", inp.vout)
            scriptsig = bytes.fromhex(inp.scriptsig)
            result += varint(len(scriptsig))
            result += scriptsig
            result += struct.pack("<I", inp.sequence)

        result += varint(len(self.outputs))
        for out in self.outputs:
            result += struct.pack("<Q", out.value)
            script = bytes.fromhex(out.script)
            result += varint(len(script))
            result += script

        if self.segwit:
            for witness in self.witnesses:
                result += varint(len(witness))
                for item in witness:
                    result += varint(len(item))
                    result += item

        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    def to_dict(self) -> dict[str, Any]:
        """Structured view, in the spirit of bitcoind's decoderawtransaction."""
        return {
            "version": self.version,
            "locktime": self.locktime,
            "vin": [
                {
                    "txid": inp.txid,
                    "vout": inp.vout,
                    "scriptSig": inp.scriptsig,
                    "sequence": inp.sequence,
                }
                for inp in self.inputs
            ],
            "vout": [
                {"n": n, "value": out.value, "scriptPubKey": out.script}
                for n, out in enumerate(self.outputs)
            ],
        }


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read varint and return (value, bytes_consumed)."""
    first = data[offset]
    if first < 0xFD:
        return first, 1
    elif first == 0xFD:
        return struct.unpack("<H", data[offset + 1 : offset + 3])[0], 3
    elif first == 0xFE:
        return struct.unpack("<I", data[offset + 1 : offset + 5])[0], 5
    else:
        return struct.unpack("<Q", data[offset + 1 : offset + 9])[0], 9


def _take(data: bytes, offset: int, size: int) -> bytes:
    chunk = data[offset : offset + size]
    if len(chunk) != size:
        raise TxCodecError(f"Unexpected end of transaction at offset {offset}")
    return chunk


def parse_transaction(tx_hex: str) -> RawTransaction:
    """
    Parse a raw transaction hex string.

    Raises:
        TxCodecError: If the hex is malformed, truncated or has trailing data
    """
    try:
        tx_bytes = bytes.fromhex(tx_hex.strip())
    except ValueError as e:
        raise TxCodecError(f"Invalid transaction hex: {e}") from e

    try:
        return _parse_tx(tx_bytes)
    except (IndexError, struct.error) as e:
        raise TxCodecError(f"Truncated transaction: {e}") from e


def _parse_tx(tx_bytes: bytes) -> RawTransaction:
    offset = 0

    version = struct.unpack("<I", _take(tx_bytes, offset, 4))[0]
    offset += 4

    # SegWit marker and flag
    segwit = tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01
    if segwit:
        offset += 2

    input_count, size = read_varint(tx_bytes, offset)
    offset += size

    inputs = []
    for _ in range(input_count):
        txid = _take(tx_bytes, offset, 32)[::-1].hex()
        offset += 32
        vout = struct.unpack("<I", _take(tx_bytes, offset, 4))[0]
        offset += 4
        script_len, size = read_varint(tx_bytes, offset)
        offset += size
        scriptsig = _take(tx_bytes, offset, script_len).hex()
        offset += script_len
        sequence = struct.unpack("<I", _take(tx_bytes, offset, 4))[0]
        offset += 4
        inputs.append(TxInput(txid=txid, vout=vout, scriptsig=scriptsig, sequence=sequence))

    output_count, size = read_varint(tx_bytes, offset)
    offset += size

    outputs = []
    for _ in range(output_count):
        value = struct.unpack("<Q", _take(tx_bytes, offset, 8))[0]
        offset += 8
        script_len, size = read_varint(tx_bytes, offset)
        offset += size
        script = _take(tx_bytes, offset, script_len).hex()
        offset += script_len
        outputs.append(TxOutput(value=value, script=script))

    witnesses: list[list[bytes]] = []
    if segwit:
        for _ in range(input_count):
            wit_count, size = read_varint(tx_bytes, offset)
            offset += size
            wit_items = []
            for _ in range(wit_count):
                item_len, size = read_varint(tx_bytes, offset)
                offset += size
                wit_items.append(_take(tx_bytes, offset, item_len))
                offset += item_len
            witnesses.append(wit_items)

    locktime = struct.unpack("<I", _take(tx_bytes, offset, 4))[0]
    offset += 4

    if offset != len(tx_bytes):
        raise TxCodecError(f"{len(tx_bytes) - offset} trailing bytes after locktime")

    return RawTransaction(
        version=version,
        inputs=inputs,
        outputs=outputs,
        witnesses=witnesses,
        locktime=locktime,
        segwit=segwit,
    )


def decode_transaction(tx_hex: str) -> dict[str, Any]:
    """Decode raw transaction hex into a structured dict."""
    return parse_transaction(tx_hex).to_dict()


def get_op_return_data(tx_hex: str, as_hex: bool = True) -> str | bytes:
    """
    Extract the null-data payload from a raw transaction.

    The payload is the script after the OP_RETURN opcode and its push-length
    byte. If several null-data outputs exist the last one wins.

    Returns:
        Payload as hex (or raw bytes), empty if there is no null-data output
    """
    payload = b""
    for out in parse_transaction(tx_hex).outputs:
        if out.is_null_data():
            payload = bytes.fromhex(out.script[4:])
    return payload.hex() if as_hex else payload


def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def add_op_return_output(tx_hex: str, metadata: bytes | str) -> str:
    """
    Append a zero-value OP_RETURN output carrying ``metadata``.

    Raises:
        TxCodecError: If the payload exceeds MAX_OP_RETURN_PAYLOAD bytes
    """
    payload = _as_bytes(metadata)
    if len(payload) > MAX_OP_RETURN_PAYLOAD:
        raise TxCodecError(
            f"OP_RETURN payload is {len(payload)} bytes, maximum is {MAX_OP_RETURN_PAYLOAD}"
        )

    tx = parse_transaction(tx_hex)
    script = bytes([OP_RETURN, len(payload)]) + payload
    tx.outputs.append(TxOutput(value=0, script=script.hex()))
    return tx.to_hex()


def build_multisig_data_script(data: bytes | str) -> str:
    """
    Build a bare 1-of-3 multisig script that stores ``data`` in its three "pubkeys".

    The payload hex is zero-padded on the left to 196 nibbles and split 64/66/66.
    The first key slot is prefixed by the payload's hex length.
    """
    data_hex = _as_bytes(data).hex()
    data_length = len(data_hex)
    if data_length > MULTISIG_DATA_HEX_WIDTH:
        raise TxCodecError(
            f"Multisig payload is {data_length} hex digits, maximum is {MULTISIG_DATA_HEX_WIDTH}"
        )

    padded = data_hex.rjust(MULTISIG_DATA_HEX_WIDTH, "0")
    part1 = padded[:64]
    part2 = padded[64:130]
    part3 = padded[130:196]

    return (
        f"{OP_1:02x}21{data_length:02x}{part1}"
        f"21{part2}"
        f"21{part3}"
        f"{OP_3:02x}{OP_CHECKMULTISIG:02x}"
    )


def add_multisig_data_output(tx_hex: str, data: bytes | str) -> str:
    """
    Insert a multisig data output immediately before the last output.

    The last output is usually change, so its position is preserved.
    """
    tx = parse_transaction(tx_hex)
    data_output = TxOutput(value=MULTISIG_DATA_OUTPUT_VALUE, script=build_multisig_data_script(data))
    if tx.outputs:
        tx.outputs.insert(len(tx.outputs) - 1, data_output)
    else:
        tx.outputs.append(data_output)
    return tx.to_hex()


def calculate_tx_hash(tx_hex: str) -> str:
    """Hash of a signed transaction without broadcasting it (double SHA256, reversed)."""
    data = bytes.fromhex(tx_hex.strip())
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[::-1].hex()


def btc_to_sats(amount: Decimal | float | int | str) -> int:
    """Convert a BTC amount to sats, rounding half away from zero."""
    sats = Decimal(str(amount)) * SATOSHI
    return int(sats.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def sats_to_btc(sats: int) -> Decimal:
    """Convert sats to a BTC amount."""
    return Decimal(sats).scaleb(-8)
