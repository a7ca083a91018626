"""
Binary layout of the finalize record a cluster posts back to the ledger.

    offset        u64 LE   8 bytes
    kind          u8       0 = wrap, 1 = transfer
    status        u8       0 = success, otherwise a failure code
    n_outputs     u8
    per output:
      nonce       16 bytes
      n_elements  u8
      elements    32 bytes each (little-endian field elements)

Outputs are ordered by affected account: wrap -> [payer],
transfer -> [sender, receiver]. Failed records carry no outputs.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shroud.crypto_core.cipher import ELEMENT_BYTES, NONCE_BYTES
from shroud.errors import MalformedRecord
from shroud.ledger.types import ComputationKind, FailureReason

KIND_CODES = {ComputationKind.WRAP: 0, ComputationKind.TRANSFER: 1}
STATUS_CODES = {
    FailureReason.INSUFFICIENT_BALANCE: 1,
    FailureReason.OVERFLOW: 2,
    FailureReason.MALFORMED_INPUT: 3,
    FailureReason.NONCE_REUSE: 4,
    FailureReason.ABORTED: 5,
}
_KINDS_BY_CODE = {v: k for k, v in KIND_CODES.items()}
_REASONS_BY_CODE = {v: k for k, v in STATUS_CODES.items()}


class EncryptedOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    nonce: bytes
    ciphertexts: List[bytes]


class FinalizeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    offset: int
    kind: ComputationKind
    failure: Optional[FailureReason] = None
    outputs: List[EncryptedOutput] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    def to_bytes(self) -> bytes:
        if not 0 <= self.offset < 2**64:
            raise MalformedRecord("offset does not fit in u64")
        if len(self.outputs) > 255:
            raise MalformedRecord("too many outputs")
        out = bytearray()
        out += self.offset.to_bytes(8, "little")
        out.append(KIND_CODES[self.kind])
        out.append(0 if self.failure is None else STATUS_CODES[self.failure])
        out.append(len(self.outputs))
        for o in self.outputs:
            if len(o.nonce) != NONCE_BYTES:
                raise MalformedRecord(f"output nonce must be {NONCE_BYTES} bytes")
            if len(o.ciphertexts) > 255:
                raise MalformedRecord("too many ciphertext elements")
            out += o.nonce
            out.append(len(o.ciphertexts))
            for c in o.ciphertexts:
                if len(c) != ELEMENT_BYTES:
                    raise MalformedRecord(f"ciphertext elements must be {ELEMENT_BYTES} bytes")
                out += c
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "FinalizeRecord":
        data = bytes(data)
        if len(data) < 11:
            raise MalformedRecord("finalize record too short")
        offset = int.from_bytes(data[0:8], "little")
        try:
            kind = _KINDS_BY_CODE[data[8]]
        except KeyError:
            raise MalformedRecord(f"unknown computation kind code {data[8]}") from None
        status = data[9]
        if status == 0:
            failure = None
        elif status in _REASONS_BY_CODE:
            failure = _REASONS_BY_CODE[status]
        else:
            raise MalformedRecord(f"unknown status code {status}")
        n_outputs = data[10]
        pos = 11
        outputs = []
        for _ in range(n_outputs):
            if pos + NONCE_BYTES + 1 > len(data):
                raise MalformedRecord("truncated output header")
            nonce = data[pos:pos + NONCE_BYTES]
            pos += NONCE_BYTES
            n_ct = data[pos]
            pos += 1
            end = pos + n_ct * ELEMENT_BYTES
            if end > len(data):
                raise MalformedRecord("truncated ciphertext elements")
            cts = [data[i:i + ELEMENT_BYTES] for i in range(pos, end, ELEMENT_BYTES)]
            pos = end
            outputs.append(EncryptedOutput(nonce=nonce, ciphertexts=cts))
        if pos != len(data):
            raise MalformedRecord("trailing bytes after last output")
        return cls(offset=offset, kind=kind, failure=failure, outputs=outputs)
