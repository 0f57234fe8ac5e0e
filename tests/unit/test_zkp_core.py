"""
Unit tests for core proof types and configuration.
"""

import pytest

from cipherproof.errors import ConfigurationError, ProvingError, ValidationError
from cipherproof.zkp.algorithms import get_descriptor
from cipherproof.zkp.core import (
    PrivateInput,
    ProofArtifact,
    ProofRequest,
    ProverConfig,
    PublicInput,
    PublicSignals,
    WitnessInput,
    coerce_bytes,
    public_input_from_dict,
)

NONCE = bytes.fromhex("006CB6DBC0543B59DA48D90B")


class TestProverConfig:
    """Test prover configuration."""

    def test_default_config(self):
        config = ProverConfig()

        assert config.backend_name == "barretenberg"
        assert config.backend_kind == "reference-ultrahonk"
        assert config.thread_count == 1
        assert config.artifact_root is None
        assert config.artifact_base_url is None
        assert config.max_proof_size == 1024 * 1024
        assert config.max_data_length == 16384
        assert config.cleanup_drain_timeout is None
        config.validate()

    @pytest.mark.parametrize(
        "field_name,value",
        [
            ("thread_count", 0),
            ("fetch_timeout", -1.0),
            ("max_proof_size", 0),
            ("max_data_length", 0),
            ("cleanup_drain_timeout", 0),
            ("backend_name", ""),
            ("backend_name", "../etc"),
            ("backend_kind", ""),
        ],
    )
    def test_config_validation(self, field_name, value):
        config = ProverConfig(**{field_name: value})
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()
        assert exc_info.value.config_key == field_name

    def test_from_dict(self):
        config = ProverConfig.from_dict({"thread_count": 4, "backend_kind": "operator"})
        assert config.thread_count == 4
        assert config.backend_kind == "operator"

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration keys: threads"):
            ProverConfig.from_dict({"threads": 4})

    def test_from_env(self):
        environ = {
            "CIPHERPROOF_THREAD_COUNT": "8",
            "CIPHERPROOF_ARTIFACT_ROOT": "/opt/circuits",
            "CIPHERPROOF_CLEANUP_DRAIN_TIMEOUT": "2.5",
            "CIPHERPROOF_BACKEND_KIND": "",
        }
        config = ProverConfig.from_env(environ=environ)
        assert config.thread_count == 8
        assert config.artifact_root == "/opt/circuits"
        assert config.cleanup_drain_timeout == 2.5
        assert config.backend_kind == "reference-ultrahonk"

    def test_from_env_invalid_number(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ProverConfig.from_env(environ={"CIPHERPROOF_THREAD_COUNT": "many"})
        assert exc_info.value.config_key == "thread_count"


class TestCoerceBytes:
    """Test wire byte coercion."""

    def test_accepts_bytes_hex_and_lists(self):
        assert coerce_bytes(b"\x01\x02", "f") == b"\x01\x02"
        assert coerce_bytes(bytearray(b"\x01"), "f") == b"\x01"
        assert coerce_bytes("0x0102", "f") == b"\x01\x02"
        assert coerce_bytes("0102", "f") == b"\x01\x02"
        assert coerce_bytes([1, 2, 255], "f") == b"\x01\x02\xff"

    def test_rejects_bad_hex(self):
        with pytest.raises(ValidationError) as exc_info:
            coerce_bytes("0xzz", "nonceOrIV")
        assert exc_info.value.field == "nonceOrIV"

    def test_rejects_out_of_range_list(self):
        with pytest.raises(ValidationError):
            coerce_bytes([1, 256], "key")
        with pytest.raises(ValidationError):
            coerce_bytes([True, 0], "key")

    def test_rejects_other_types(self):
        with pytest.raises(ValidationError):
            coerce_bytes(12, "key")


class TestInputs:
    """Test private and public input value objects."""

    def test_private_input_hides_secrets_in_repr(self):
        private = PrivateInput(key=b"\x11" * 16, plaintext=b"secret")
        assert "secret" not in repr(private)
        assert "11" not in repr(private)

    def test_public_input_coerces_fields(self):
        public = PublicInput(ciphertext="0xabcd", nonce=list(NONCE), byte_offset=16)
        assert public.ciphertext == b"\xab\xcd"
        assert public.nonce == NONCE
        assert public.byte_offset == 16

    def test_public_input_rejects_non_integer_offset(self):
        with pytest.raises(ValidationError):
            PublicInput(ciphertext=b"\x00", nonce=NONCE, byte_offset="16")

    def test_from_counter_block(self):
        descriptor = get_descriptor("aes-128-ctr")
        public = PublicInput.from_counter_block(b"\x00" * 4, NONCE + b"\x00\x00\x00\x03", descriptor)
        assert public.nonce == NONCE
        assert public.byte_offset == 32

    def test_from_counter_block_rejects_counter_below_initial(self):
        descriptor = get_descriptor("aes-128-ctr")
        with pytest.raises(ValidationError):
            PublicInput.from_counter_block(b"\x00", NONCE + b"\x00\x00\x00\x00", descriptor)


class TestProofRequestParsing:
    """Test deserialization of transport shaped inputs."""

    def test_flat_shape(self):
        request = ProofRequest.from_dict(
            "AES-128-CTR",
            {
                "key": "00" * 16,
                "plaintext": [1, 2, 3],
                "ciphertext": [4, 5, 6],
                "nonceOrIV": NONCE.hex(),
                "byteOffset": 0,
            },
        )
        assert request.algorithm_id == "aes-128-ctr"
        assert request.private_input.plaintext == b"\x01\x02\x03"
        assert request.public_input.ciphertext == b"\x04\x05\x06"
        assert request.public_input.nonce == NONCE

    def test_nested_shape(self):
        request = ProofRequest.from_dict(
            "chacha20",
            {
                "privateInput": {"key": "00" * 32, "plaintext": "aa"},
                "publicInput": {"ciphertext": "bb", "iv": "00" * 12, "offsetBytes": 64},
            },
        )
        assert request.public_input.byte_offset == 64

    def test_missing_fields(self):
        with pytest.raises(ValidationError, match="plaintext"):
            ProofRequest.from_dict("chacha20", {"key": "00" * 32, "ciphertext": "bb", "nonce": "00" * 12})
        with pytest.raises(ValidationError, match="ciphertext"):
            ProofRequest.from_dict("chacha20", {"key": "00" * 32, "plaintext": "bb", "nonce": "00" * 12})

    def test_inputs_must_be_mapping(self):
        with pytest.raises(ValidationError):
            ProofRequest.from_dict("chacha20", ["not", "a", "dict"])

    def test_scalar_counter_maps_to_offset(self):
        public = public_input_from_dict(
            "chacha20", {"ciphertext": "bb", "nonce": "00" * 12, "counter": 3}
        )
        assert public.byte_offset == 128

    def test_counter_block_for_combined_layout(self):
        public = public_input_from_dict(
            "aes-256-ctr",
            {"ciphertext": "bb", "counter": list(NONCE + b"\x00\x00\x00\x02")},
        )
        assert public.nonce == NONCE
        assert public.byte_offset == 16

    def test_counter_block_rejected_for_separate_layout(self):
        with pytest.raises(ValidationError):
            public_input_from_dict("chacha20", {"ciphertext": "bb", "counter": "00" * 16})

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigurationError):
            ProofRequest.from_dict("des", {"key": "00", "plaintext": "00", "ciphertext": "00", "nonce": "00"})


class TestProofArtifact:
    """Test proof artifacts."""

    def _signals(self):
        return PublicSignals(fields=("0x" + "0" * 64,), ciphertext=b"", nonce=NONCE, counter=1)

    def test_empty_proof_rejected(self):
        with pytest.raises(ProvingError) as exc_info:
            ProofArtifact(algorithm_id="chacha20", proof_bytes=b"", public_signals=self._signals())

        assert not exc_info.value.retryable

    def test_to_dict(self):
        artifact = ProofArtifact(
            algorithm_id="chacha20",
            proof_bytes=b"\xde\xad",
            public_signals=self._signals(),
            timestamp=123.0,
            metadata={"proof_size": 2},
        )
        data = artifact.to_dict()
        assert data["algorithmId"] == "chacha20"
        assert data["proof"] == "dead"
        assert data["publicSignals"] == ["0x" + "0" * 64]
        assert data["timestamp"] == 123.0
        assert data["metadata"] == {"proof_size": 2}


class TestWitnessInput:
    """Test witness input serialization."""

    def test_to_abi_dict(self):
        witness = WitnessInput(
            algorithm_id="chacha20",
            values={"key": [1, 2], "counter": 7},
            public_fields=[],
        )
        assert witness.to_abi_dict() == {"key": ["1", "2"], "counter": "7"}
