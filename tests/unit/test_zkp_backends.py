"""
Unit tests for proving backends.
"""

from unittest.mock import AsyncMock

import pytest

from cipherproof.errors import (
    ConfigurationError,
    EngineError,
    ProvingError,
    ValidationError,
    WitnessExecutionError,
)
from cipherproof.zkp.algorithms import get_descriptor
from cipherproof.zkp.artifacts import BUNDLED_CIRCUITS_DIR, CircuitArtifact
from cipherproof.zkp import registry as registry_module
from cipherproof.zkp.backends import (
    BackendFactory,
    OperatorBackend,
    ReferenceBackend,
    create_backend,
    supported_backend_kinds,
)
from cipherproof.zkp.core import ProverConfig, PublicInput, WitnessTrace
from cipherproof.zkp.generation import PROOF_SIZE, derive_keys
from cipherproof.zkp.witness import WitnessCodec

from conftest import make_inputs


def load_artifact(algorithm_id) -> CircuitArtifact:
    descriptor = get_descriptor(algorithm_id)
    raw = (BUNDLED_CIRCUITS_DIR / "barretenberg" / descriptor.artifact_name).read_bytes()
    return CircuitArtifact.from_bytes(descriptor.artifact_name, raw)


def build_backend(algorithm_id, config=None, backend_cls=ReferenceBackend, **kwargs):
    descriptor = get_descriptor(algorithm_id)
    artifact = load_artifact(algorithm_id)
    codec = WitnessCodec(descriptor, artifact.abi)
    return backend_cls(descriptor, artifact, codec, config or ProverConfig(), **kwargs)


def tampered(public: PublicInput, ciphertext=None, nonce=None) -> PublicInput:
    return PublicInput(
        ciphertext=ciphertext if ciphertext is not None else public.ciphertext,
        nonce=nonce if nonce is not None else public.nonce,
        byte_offset=public.byte_offset,
    )


class TestReferenceBackendLifecycle:
    """Test engine construction and release."""

    @pytest.mark.asyncio
    async def test_setup_is_idempotent(self):
        backend = build_backend("aes-128-ctr")
        assert not backend.is_ready

        await backend.setup()
        await backend.setup()

        assert backend.is_ready
        assert backend.setup_count == 1
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_destroy_twice(self):
        backend = build_backend("chacha20")
        await backend.setup()
        await backend.destroy()
        await backend.destroy()
        assert not backend.is_ready

    @pytest.mark.asyncio
    async def test_calls_before_setup_raise(self):
        backend = build_backend("chacha20")
        private, public = make_inputs("chacha20")
        witness = backend.codec.to_witness(private, public)

        with pytest.raises(EngineError, match="not initialized"):
            await backend.execute_circuit(witness)
        with pytest.raises(EngineError):
            await backend.verify(b"\x00" * PROOF_SIZE, [], public)

    @pytest.mark.asyncio
    async def test_setup_rejects_mismatched_program(self):
        descriptor = get_descriptor("aes-256-ctr")
        aes128 = load_artifact("aes-128-ctr")
        aes256 = load_artifact("aes-256-ctr")
        franken = CircuitArtifact(
            name="aes_256_ctr.json",
            bytecode=aes128.bytecode,
            abi=aes256.abi,
            noir_version=aes256.noir_version,
            hash=aes128.hash,
        )
        backend = ReferenceBackend(
            descriptor, franken, WitnessCodec(descriptor, franken.abi), ProverConfig()
        )

        with pytest.raises(EngineError, match="does not match"):
            await backend.setup()
        assert not backend.is_ready

    @pytest.mark.asyncio
    async def test_get_info(self):
        backend = build_backend("aes-128-ctr", ProverConfig(thread_count=3))
        await backend.setup()
        info = backend.get_info()
        await backend.destroy()

        assert info["backend_kind"] == "reference-ultrahonk"
        assert info["ready"] is True
        assert info["thread_count"] == 3
        assert info["gadget"] == "aes-ctr"
        assert info["proof_size"] == PROOF_SIZE
        assert "proving_key_hash" in info


class TestReferenceBackendProving:
    """Test execute, prove and verify."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("algorithm_id", ["aes-128-ctr", "aes-256-ctr", "chacha20"])
    async def test_prove_and_verify(self, algorithm_id):
        backend = build_backend(algorithm_id)
        await backend.setup()
        private, public = make_inputs(algorithm_id)

        trace = await backend.execute_circuit(backend.codec.to_witness(private, public))
        raw = await backend.prove(trace)

        assert len(raw.proof) == PROOF_SIZE
        assert raw.public_inputs == backend.codec.public_fields(public)
        assert await backend.verify(raw.proof, raw.public_inputs, public)
        assert await backend.verify(raw.proof.hex(), raw.public_inputs, public)
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_inconsistent_witness(self):
        backend = build_backend("aes-128-ctr")
        await backend.setup()
        private, public = make_inputs("aes-128-ctr")
        bad = bytearray(public.ciphertext)
        bad[3] ^= 0xFF

        with pytest.raises(WitnessExecutionError):
            await backend.execute_circuit(
                backend.codec.to_witness(private, tampered(public, ciphertext=bytes(bad)))
            )
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_verify_rejects_tampered_public_input(self):
        backend = build_backend("chacha20")
        await backend.setup()
        private, public = make_inputs("chacha20")
        raw = await backend.prove(
            await backend.execute_circuit(backend.codec.to_witness(private, public))
        )

        bad_ciphertext = bytearray(public.ciphertext)
        bad_ciphertext[0] ^= 1
        bad_nonce = bytearray(public.nonce)
        bad_nonce[-1] ^= 1

        assert not await backend.verify(
            raw.proof, raw.public_inputs, tampered(public, ciphertext=bytes(bad_ciphertext))
        )
        assert not await backend.verify(
            raw.proof, raw.public_inputs, tampered(public, nonce=bytes(bad_nonce))
        )
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_verify_rejects_forged_tag(self):
        backend = build_backend("aes-128-ctr")
        await backend.setup()
        private, public = make_inputs("aes-128-ctr")
        raw = await backend.prove(
            await backend.execute_circuit(backend.codec.to_witness(private, public))
        )
        forged = raw.proof[:-1] + bytes([raw.proof[-1] ^ 1])

        assert not await backend.verify(forged, raw.public_inputs, public)
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_artifact_holder_can_mint_accepted_proofs(self):
        backend = build_backend("aes-128-ctr")
        await backend.setup()
        _, public = make_inputs("aes-128-ctr")
        # a statement nobody proved: the ciphertext is all zeros
        false_statement = tampered(public, ciphertext=bytes(len(public.ciphertext)))
        fields = backend.codec.public_fields(false_statement)

        minted = derive_keys(load_artifact("aes-128-ctr")).prove(b"no witness", fields)

        assert await backend.verify(minted, fields, false_statement)
        assert "not an UltraHonk prover" in ReferenceBackend.__doc__
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_verify_structural_errors_raise(self):
        backend = build_backend("aes-128-ctr")
        await backend.setup()
        private, public = make_inputs("aes-128-ctr")
        fields = backend.codec.public_fields(public)

        with pytest.raises(ValidationError):
            await backend.verify(b"\x00" * 10, fields, public)
        with pytest.raises(ValidationError):
            await backend.verify(b"\x00" * PROOF_SIZE, fields[:3], public)
        with pytest.raises(ValidationError):
            await backend.verify("zz", fields, public)
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_prove_rejects_foreign_trace(self):
        backend = build_backend("aes-128-ctr")
        await backend.setup()
        trace = WitnessTrace(
            algorithm_id="aes-128-ctr",
            circuit_hash="00" * 32,
            assignment=b"{}",
            public_fields=["0x" + "0" * 64],
        )
        with pytest.raises(ProvingError, match="different circuit"):
            await backend.prove(trace)
        await backend.destroy()

    @pytest.mark.asyncio
    async def test_prove_respects_max_proof_size(self):
        backend = build_backend("chacha20", ProverConfig(max_proof_size=32))
        await backend.setup()
        private, public = make_inputs("chacha20")
        trace = await backend.execute_circuit(backend.codec.to_witness(private, public))

        with pytest.raises(ProvingError, match="max_proof_size"):
            await backend.prove(trace)
        await backend.destroy()


class FakeOperator:
    """Stand-in for a packaged prover helper."""

    def __init__(self, witness_error=None, prove_error=None, verify_result=True):
        self.witness_error = witness_error
        self.prove_error = prove_error
        self.verify_result = verify_result
        self.verify_calls = []
        self.destroyed = False

    async def generate_witness(self, inputs):
        if self.witness_error:
            raise self.witness_error
        return b"solved:" + repr(sorted(inputs)).encode()

    async def prove(self, witness):
        if self.prove_error:
            raise self.prove_error
        return b"\x42" * 128, None

    async def verify(self, public_signals, proof):
        self.verify_calls.append((public_signals, proof))
        if isinstance(self.verify_result, Exception):
            raise self.verify_result
        return self.verify_result

    async def destroy(self):
        self.destroyed = True


def operator_backend(operator, algorithm_id="chacha20"):
    return build_backend(
        algorithm_id,
        ProverConfig(backend_kind="operator"),
        backend_cls=OperatorBackend,
        operator_factory=lambda artifact, threads: operator,
    )


class TestOperatorBackend:
    """Test delegation to an operator."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        operator = FakeOperator()
        backend = operator_backend(operator)
        await backend.setup()
        private, public = make_inputs("chacha20")

        trace = await backend.execute_circuit(backend.codec.to_witness(private, public))
        raw = await backend.prove(trace)

        assert raw.proof == b"\x42" * 128
        assert raw.public_inputs == backend.codec.public_fields(public)
        assert await backend.verify(raw.proof, raw.public_inputs, public)

        await backend.destroy()
        assert operator.destroyed

    @pytest.mark.asyncio
    async def test_factory_from_backend_params(self):
        operator = FakeOperator()
        config = ProverConfig(
            backend_kind="operator",
            backend_params={"operator_factory": lambda artifact, threads: operator},
        )
        backend = build_backend("chacha20", config, backend_cls=OperatorBackend)
        await backend.setup()
        assert backend.is_ready

    def test_missing_factory(self):
        with pytest.raises(ConfigurationError):
            build_backend("chacha20", ProverConfig(backend_kind="operator"), backend_cls=OperatorBackend)

    @pytest.mark.asyncio
    async def test_incomplete_operator(self):
        backend = build_backend(
            "chacha20",
            ProverConfig(),
            backend_cls=OperatorBackend,
            operator_factory=lambda artifact, threads: object(),
        )
        with pytest.raises(EngineError, match="does not implement"):
            await backend.setup()

    @pytest.mark.asyncio
    async def test_async_factory(self):
        operator = FakeOperator()
        factory = AsyncMock(return_value=operator)
        backend = build_backend(
            "chacha20", ProverConfig(), backend_cls=OperatorBackend, operator_factory=factory
        )
        await backend.setup()
        factory.assert_called_once_with(backend.artifact, 1)

    @pytest.mark.asyncio
    async def test_constraint_failure_is_witness_error(self):
        backend = operator_backend(
            FakeOperator(witness_error=RuntimeError("Circuit execution failed: Cannot satisfy constraint"))
        )
        await backend.setup()
        private, public = make_inputs("chacha20")

        with pytest.raises(WitnessExecutionError) as exc_info:
            await backend.execute_circuit(backend.codec.to_witness(private, public))
        assert exc_info.value.algorithm_id == "chacha20"

    @pytest.mark.asyncio
    async def test_other_failures_are_engine_errors(self):
        backend = operator_backend(FakeOperator(witness_error=MemoryError("wasm out of memory")))
        await backend.setup()
        private, public = make_inputs("chacha20")

        with pytest.raises(EngineError) as exc_info:
            await backend.execute_circuit(backend.codec.to_witness(private, public))
        assert not isinstance(exc_info.value, WitnessExecutionError)

    @pytest.mark.asyncio
    async def test_prove_failure(self):
        backend = operator_backend(FakeOperator(prove_error=RuntimeError("boom")))
        await backend.setup()
        private, public = make_inputs("chacha20")
        trace = await backend.execute_circuit(backend.codec.to_witness(private, public))

        with pytest.raises(ProvingError, match="boom"):
            await backend.prove(trace)

    @pytest.mark.asyncio
    async def test_verify_exception_is_invalid(self):
        backend = operator_backend(FakeOperator(verify_result=RuntimeError("bad proof")))
        await backend.setup()
        _, public = make_inputs("chacha20")

        assert not await backend.verify(b"\x01" * 64, backend.codec.public_fields(public), public)

    @pytest.mark.asyncio
    async def test_verify_mismatched_public_input_skips_operator(self):
        operator = FakeOperator()
        backend = operator_backend(operator)
        await backend.setup()
        _, public = make_inputs("chacha20")
        fields = backend.codec.public_fields(public)

        assert not await backend.verify(b"\x01" * 64, fields, tampered(public, nonce=bytes(12)))
        assert operator.verify_calls == []


class TestBackendFactory:
    """Test backend selection by kind."""

    def test_known_kinds(self):
        assert supported_backend_kinds() == ["operator", "reference-ultrahonk"]

    def test_registry_shares_factory_type(self):
        assert registry_module.BackendFactory is BackendFactory

    def test_create_reference_backend(self):
        descriptor = get_descriptor("aes-128-ctr")
        artifact = load_artifact("aes-128-ctr")
        backend = create_backend(
            "reference-ultrahonk",
            descriptor,
            artifact,
            WitnessCodec(descriptor, artifact.abi),
            ProverConfig(),
        )
        assert isinstance(backend, ReferenceBackend)
        assert backend.kind == "reference-ultrahonk"

    def test_unknown_kind(self):
        descriptor = get_descriptor("aes-128-ctr")
        artifact = load_artifact("aes-128-ctr")
        with pytest.raises(ConfigurationError, match="Unknown backend kind 'groth16'"):
            create_backend(
                "groth16", descriptor, artifact, WitnessCodec(descriptor, artifact.abi), ProverConfig()
            )
