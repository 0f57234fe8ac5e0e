"""
Witness codec.

Translates typed proof inputs into the parameter map a circuit consumes and
decodes the public outputs a proving engine returns. The codec owns the
counter layout translation: a circuit may take the combined 16-byte
``nonce || counter`` block as one ``counter`` array, or a ``nonce`` array
plus a scalar ``counter``. Callers never need to know which.

Public outputs are field elements rendered as ``0x`` followed by 64 hex
digits, one per byte of a public array and one per public scalar, in ABI
order.
"""

import re
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import ConfigurationError, ValidationError, create_length_error
from .algorithms import (
    MAX_COUNTER,
    AlgorithmDescriptor,
    AlgorithmLike,
    build_counter_block,
    counter_for_offset,
    get_descriptor,
    split_counter_block,
)
from .artifacts import AbiParameter, CircuitAbi
from .core import PrivateInput, PublicInput, PublicSignals, WitnessInput

FIELD_PATTERN = re.compile(r"^0x[0-9a-fA-F]{1,64}$")

KEY_PARAM = "key"
NONCE_PARAM = "nonce"
COUNTER_PARAM = "counter"
PLAINTEXT_PARAM = "plaintext"
CIPHERTEXT_PARAM = "ciphertext"

# counter wiring of a circuit
BLOCK_WIRING = "block"
SPLIT_WIRING = "split"


def encode_field(value: int) -> str:
    """Render an integer as a 32-byte big-endian field string."""
    return "0x" + format(value, "064x")


def decode_field(value: Any, index: int) -> int:
    if not isinstance(value, str) or not FIELD_PATTERN.match(value):
        raise ValidationError(
            f"Public signal {index} is not a field element string",
            field=f"publicSignals[{index}]",
            expected="0x-prefixed hex",
            actual=str(value)[:20],
        )
    return int(value, 16)


class WitnessCodec:
    """Codec for one algorithm and one circuit interface."""

    def __init__(
        self,
        descriptor: AlgorithmDescriptor,
        abi: CircuitAbi,
        max_data_length: Optional[int] = None,
    ):
        self.descriptor = descriptor
        self.abi = abi
        self.max_data_length = max_data_length
        self.counter_wiring = self._check_abi()

    @property
    def algorithm_id(self) -> str:
        return self.descriptor.algorithm_id

    def _require(self, name: str) -> AbiParameter:
        param = self.abi.get(name)
        if param is None:
            raise ConfigurationError(
                f"Circuit for {self.algorithm_id} has no '{name}' parameter",
                config_key=name,
            )
        return param

    def _check_abi(self) -> str:
        """Check the circuit interface fits the descriptor; return the counter wiring."""
        d = self.descriptor
        key = self._require(KEY_PARAM)
        if not key.is_array or key.length != d.key_length or key.is_public:
            raise ConfigurationError(
                f"Circuit '{KEY_PARAM}' for {d.algorithm_id} must be a private "
                f"{d.key_length}-byte array",
                config_key=KEY_PARAM,
            )
        for name in (PLAINTEXT_PARAM, CIPHERTEXT_PARAM):
            if not self._require(name).is_array:
                raise ConfigurationError(
                    f"Circuit '{name}' for {d.algorithm_id} must be a byte array",
                    config_key=name,
                )
        if not self._require(CIPHERTEXT_PARAM).is_public:
            raise ConfigurationError(
                f"Circuit '{CIPHERTEXT_PARAM}' for {d.algorithm_id} must be public",
                config_key=CIPHERTEXT_PARAM,
            )

        dynamic = [p.name for p in self.abi.public_parameters if p.is_array and p.length is None]
        if len(dynamic) > 1:
            raise ConfigurationError(
                f"Circuit for {d.algorithm_id} has more than one variable length "
                f"public parameter: {', '.join(dynamic)}"
            )

        counter = self._require(COUNTER_PARAM)
        if counter.is_array:
            if counter.length != d.counter_block_length:
                raise ConfigurationError(
                    f"Circuit '{COUNTER_PARAM}' block for {d.algorithm_id} must be "
                    f"{d.counter_block_length} bytes",
                    config_key=COUNTER_PARAM,
                )
            return BLOCK_WIRING

        nonce = self._require(NONCE_PARAM)
        if not nonce.is_array or nonce.length != d.nonce_length:
            raise ConfigurationError(
                f"Circuit '{NONCE_PARAM}' for {d.algorithm_id} must be a "
                f"{d.nonce_length}-byte array",
                config_key=NONCE_PARAM,
            )
        if counter.width < 32:
            raise ConfigurationError(
                f"Circuit '{COUNTER_PARAM}' for {d.algorithm_id} must be at least 32 bits",
                config_key=COUNTER_PARAM,
            )
        return SPLIT_WIRING

    def validate(self, private_input: Optional[PrivateInput], public_input: PublicInput) -> int:
        """Check every field length; return the block counter for the offset."""
        d = self.descriptor
        if private_input is not None:
            if len(private_input.key) != d.key_length:
                raise create_length_error("key", d.key_length, len(private_input.key))
            if len(private_input.plaintext) != len(public_input.ciphertext):
                raise create_length_error(
                    "plaintext", len(public_input.ciphertext), len(private_input.plaintext)
                )
        if len(public_input.nonce) != d.nonce_length:
            raise create_length_error("nonceOrIV", d.nonce_length, len(public_input.nonce))
        data_length = len(public_input.ciphertext)
        if data_length == 0:
            raise ValidationError(
                "Field 'ciphertext' cannot be empty", field="ciphertext", expected=">= 1", actual=0
            )
        if self.max_data_length is not None and data_length > self.max_data_length:
            raise ValidationError(
                f"Field 'ciphertext' exceeds {self.max_data_length} bytes",
                field="ciphertext",
                expected=f"<= {self.max_data_length}",
                actual=data_length,
            )
        fixed = self.abi.get(CIPHERTEXT_PARAM).length
        if fixed is not None and data_length != fixed:
            raise create_length_error("ciphertext", fixed, data_length)
        counter = counter_for_offset(d, public_input.byte_offset)
        last = counter + (data_length - 1) // d.block_size
        if last > MAX_COUNTER:
            raise ValidationError(
                f"Field 'byteOffset' {public_input.byte_offset} with {data_length} bytes "
                f"runs the block counter past {MAX_COUNTER}",
                field="byteOffset",
                expected=f"last block counter <= {MAX_COUNTER}",
                actual=last,
            )
        return counter

    def _public_values(self, public_input: PublicInput, counter: int) -> Dict[str, Any]:
        values: Dict[str, Any] = {CIPHERTEXT_PARAM: list(public_input.ciphertext)}
        if self.counter_wiring == BLOCK_WIRING:
            block = build_counter_block(public_input.nonce, counter, self.descriptor.nonce_length)
            values[COUNTER_PARAM] = list(block)
        else:
            values[NONCE_PARAM] = list(public_input.nonce)
            values[COUNTER_PARAM] = counter
        return values

    def _encode_public(self, values: Dict[str, Any]) -> List[str]:
        encoded: List[str] = []
        for param in self.abi.public_parameters:
            if param.name not in values:
                raise ConfigurationError(
                    f"No value for public parameter '{param.name}' of {self.algorithm_id}"
                )
            value = values[param.name]
            if param.is_array:
                encoded.extend(encode_field(v) for v in value)
            else:
                encoded.append(encode_field(value))
        return encoded

    def to_witness(self, private_input: PrivateInput, public_input: PublicInput) -> WitnessInput:
        """Map typed inputs onto the circuit parameters, in ABI order."""
        counter = self.validate(private_input, public_input)
        values = self._public_values(public_input, counter)
        values[KEY_PARAM] = list(private_input.key)
        values[PLAINTEXT_PARAM] = list(private_input.plaintext)

        ordered: Dict[str, Any] = OrderedDict()
        for param in self.abi.parameters:
            if param.name not in values:
                raise ConfigurationError(
                    f"Circuit parameter '{param.name}' of {self.algorithm_id} "
                    f"has no source in the proof request"
                )
            ordered[param.name] = values[param.name]

        return WitnessInput(
            algorithm_id=self.algorithm_id,
            values=ordered,
            public_fields=self._encode_public(values),
        )

    def public_fields(self, public_input: PublicInput) -> List[str]:
        """Expected public signals for a public input."""
        counter = self.validate(None, public_input)
        return self._encode_public(self._public_values(public_input, counter))

    def from_proof_result(self, raw_public_outputs: Sequence[Any]) -> PublicSignals:
        """Decode a proving engine's public outputs."""
        if isinstance(raw_public_outputs, (str, bytes)) or not isinstance(
            raw_public_outputs, (list, tuple)
        ):
            raise ValidationError(
                "Public signals must be a list of field strings",
                field="publicSignals",
                expected="list",
                actual=type(raw_public_outputs).__name__,
            )
        numbers = [decode_field(v, i) for i, v in enumerate(raw_public_outputs)]

        public = self.abi.public_parameters
        fixed = sum(
            (p.length if p.is_array else 1) for p in public if not (p.is_array and p.length is None)
        )
        dynamic_length = len(numbers) - fixed
        if dynamic_length < 0 or (
            dynamic_length and not any(p.is_array and p.length is None for p in public)
        ):
            raise ValidationError(
                f"Expected {fixed} fixed public signals for {self.algorithm_id}, "
                f"got {len(numbers)}",
                field="publicSignals",
                expected=fixed,
                actual=len(numbers),
            )

        decoded: Dict[str, Any] = {}
        position = 0
        for param in public:
            if param.is_array:
                length = param.length if param.length is not None else dynamic_length
                chunk = numbers[position:position + length]
                position += length
                if any(v >= (1 << param.width) for v in chunk):
                    raise ValidationError(
                        f"Public signal for '{param.name}' exceeds {param.width} bits",
                        field=param.name,
                    )
                decoded[param.name] = bytes(chunk)
            else:
                value = numbers[position]
                position += 1
                if value >= (1 << param.width):
                    raise ValidationError(
                        f"Public signal for '{param.name}' exceeds {param.width} bits",
                        field=param.name,
                    )
                decoded[param.name] = value

        if self.counter_wiring == BLOCK_WIRING:
            nonce, counter = split_counter_block(decoded[COUNTER_PARAM], self.descriptor.nonce_length)
        else:
            nonce, counter = decoded[NONCE_PARAM], decoded[COUNTER_PARAM]

        return PublicSignals(
            fields=tuple(encode_field(n) for n in numbers),
            ciphertext=decoded.get(CIPHERTEXT_PARAM, b""),
            nonce=nonce,
            counter=counter,
        )

    def coerce_signals(self, public_signals: Any) -> Tuple[str, ...]:
        """Normalize PublicSignals or a raw list into field strings."""
        if isinstance(public_signals, PublicSignals):
            return public_signals.fields
        return self.from_proof_result(public_signals).fields


def to_witness(
    algorithm_id: AlgorithmLike,
    abi: CircuitAbi,
    private_input: PrivateInput,
    public_input: PublicInput,
) -> WitnessInput:
    return WitnessCodec(get_descriptor(algorithm_id), abi).to_witness(private_input, public_input)


def from_proof_result(
    algorithm_id: AlgorithmLike, abi: CircuitAbi, raw_public_outputs: Sequence[Any]
) -> PublicSignals:
    return WitnessCodec(get_descriptor(algorithm_id), abi).from_proof_result(raw_public_outputs)
