"""
Circuit programs and constraint evaluation.

The bytecode of a bundled artifact is a gzip-compressed JSON program that
names a cipher gadget and binds its wires to ABI parameters::

    {"version": 1, "gadget": "aes-ctr", "key_length": 16,
     "wires": {"key": "key", "counter_block": "counter",
               "input": "plaintext", "output": "ciphertext"}}

Executing a program over a witness re-derives the keystream and checks the
claimed output. A mismatch is an unsatisfied constraint, reported as
:class:`WitnessExecutionError`.
"""

import gzip
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..errors import EngineError, WitnessExecutionError
from .algorithms import MAX_COUNTER

SUPPORTED_GADGETS = ("aes-ctr", "chacha20")

_REQUIRED_WIRES = {
    "aes-ctr": ("key", "counter_block", "input", "output"),
    "chacha20": ("key", "nonce", "counter", "input", "output"),
}


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes(int(v) for v in value)


@dataclass(frozen=True)
class CircuitProgram:
    """Decoded circuit program."""

    gadget: str
    key_length: int
    wires: Mapping[str, str]
    version: int = 1

    @classmethod
    def from_bytecode(cls, bytecode: bytes) -> "CircuitProgram":
        """Decode artifact bytecode. Unusable bytecode raises EngineError."""
        try:
            document = json.loads(gzip.decompress(bytecode).decode("utf-8"))
            gadget = document["gadget"]
            wires = dict(document["wires"])
            key_length = int(document["key_length"])
            version = int(document.get("version", 1))
        except (OSError, EOFError, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise EngineError(
                f"Cannot decode circuit bytecode: {e}", operation="setup", cause=e,
                retryable=False,
            )

        if gadget not in SUPPORTED_GADGETS:
            raise EngineError(
                f"Unsupported circuit gadget {gadget!r}", operation="setup", retryable=False
            )
        missing = [w for w in _REQUIRED_WIRES[gadget] if w not in wires]
        if missing:
            raise EngineError(
                f"Circuit program for {gadget} is missing wires: {', '.join(missing)}",
                operation="setup",
                retryable=False,
            )
        if gadget == "aes-ctr" and key_length not in (16, 24, 32):
            raise EngineError(
                f"Invalid AES key length {key_length}", operation="setup", retryable=False
            )
        if gadget == "chacha20" and key_length != 32:
            raise EngineError(
                f"Invalid ChaCha20 key length {key_length}", operation="setup", retryable=False
            )

        return cls(gadget=gadget, key_length=key_length, wires=wires, version=version)

    def _wire(self, values: Mapping[str, Any], wire: str) -> Any:
        name = self.wires[wire]
        if name not in values:
            raise WitnessExecutionError(f"Witness has no value for parameter '{name}'")
        return values[name]

    def execute(self, values: Mapping[str, Any]) -> None:
        """Evaluate all constraints over ``values``.

        Returns normally when the witness satisfies the circuit.
        """
        key = _as_bytes(self._wire(values, "key"))
        data_in = _as_bytes(self._wire(values, "input"))
        data_out = _as_bytes(self._wire(values, "output"))

        if len(key) != self.key_length:
            raise WitnessExecutionError(
                f"Key wire carries {len(key)} bytes, circuit expects {self.key_length}"
            )
        if len(data_in) != len(data_out):
            raise WitnessExecutionError("Input and output wires differ in length")

        if self.gadget == "aes-ctr":
            keystream_input = self._aes_ctr(key, values, data_in)
        else:
            keystream_input = self._chacha20(key, values, data_in)

        if keystream_input != data_out:
            raise WitnessExecutionError(
                "Cannot satisfy constraint: output is not the cipher applied to "
                "the input under the given key and counter"
            )

    def _aes_ctr(self, key: bytes, values: Mapping[str, Any], data: bytes) -> bytes:
        block = _as_bytes(self._wire(values, "counter_block"))
        if len(block) != 16:
            raise WitnessExecutionError("AES counter block must be 16 bytes")
        counter = int.from_bytes(block[12:], "big")
        blocks = (len(data) + 15) // 16
        # 32-bit counter must not wrap inside the message
        if counter + max(blocks - 1, 0) > MAX_COUNTER:
            raise WitnessExecutionError("AES-CTR block counter overflows 32 bits")
        encryptor = Cipher(
            algorithms.AES(key), modes.CTR(block), backend=default_backend()
        ).encryptor()
        return encryptor.update(data) + encryptor.finalize()

    def _chacha20(self, key: bytes, values: Mapping[str, Any], data: bytes) -> bytes:
        nonce = _as_bytes(self._wire(values, "nonce"))
        counter = int(self._wire(values, "counter"))
        if len(nonce) != 12:
            raise WitnessExecutionError("ChaCha20 nonce must be 12 bytes")
        blocks = (len(data) + 63) // 64
        if counter < 0 or counter + max(blocks - 1, 0) > MAX_COUNTER:
            raise WitnessExecutionError("ChaCha20 block counter overflows 32 bits")
        full_nonce = counter.to_bytes(4, "little") + nonce
        encryptor = Cipher(
            algorithms.ChaCha20(key, full_nonce), mode=None, backend=default_backend()
        ).encryptor()
        return encryptor.update(data) + encryptor.finalize()

    def describe(self) -> Dict[str, Any]:
        return {
            "gadget": self.gadget,
            "key_length": self.key_length,
            "wires": dict(self.wires),
            "version": self.version,
        }
