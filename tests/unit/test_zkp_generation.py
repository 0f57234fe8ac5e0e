"""
Unit tests for proving and verification keys.
"""

import pytest

from cipherproof.errors import ProvingError
from cipherproof.zkp.artifacts import CircuitAbi, CircuitArtifact
from cipherproof.zkp.generation import (
    COMMITMENT_SIZE,
    PROOF_SIZE,
    derive_keys,
    key_info,
)

FIELDS = ["0x" + "0" * 63 + "1", "0x" + "0" * 63 + "2"]


def make_artifact(bytecode=b"circuit-a", digest="aa" * 32):
    return CircuitArtifact(
        name="test.json", bytecode=bytecode, abi=CircuitAbi(()), noir_version="1", hash=digest
    )


class TestKeyDerivation:
    """Test deterministic key derivation."""

    def test_keys_are_deterministic(self):
        first = derive_keys(make_artifact())
        second = derive_keys(make_artifact())

        assert first.key_data == second.key_data
        assert first.verification_key.key_data == second.verification_key.key_data
        assert first.circuit_hash == "aa" * 32

    def test_keys_differ_per_circuit(self):
        assert derive_keys(make_artifact(b"a")).key_data != derive_keys(make_artifact(b"b")).key_data

    def test_key_info_has_no_secrets(self):
        pk = derive_keys(make_artifact())
        info = key_info(pk)

        assert info["proof_size"] == PROOF_SIZE
        assert info["circuit_hash"] == "aa" * 32
        assert pk.key_data.hex() not in str(info)
        assert "key_data" not in repr(pk)


class TestProofTranscripts:
    """Test proof construction and checking."""

    def test_prove_and_check(self):
        pk = derive_keys(make_artifact())
        proof = pk.prove(b"assignment", FIELDS)

        assert len(proof) == PROOF_SIZE
        assert pk.verification_key.check(proof, FIELDS)

    def test_proofs_are_blinded(self):
        pk = derive_keys(make_artifact())
        assert pk.prove(b"assignment", FIELDS) != pk.prove(b"assignment", FIELDS)

    def test_check_rejects_other_public_fields(self):
        pk = derive_keys(make_artifact())
        proof = pk.prove(b"assignment", FIELDS)

        assert not pk.verification_key.check(proof, list(reversed(FIELDS)))
        assert not pk.verification_key.check(proof, FIELDS[:1])

    def test_check_rejects_tampered_proof(self):
        pk = derive_keys(make_artifact())
        proof = bytearray(pk.prove(b"assignment", FIELDS))
        proof[COMMITMENT_SIZE - 1] ^= 0x80

        assert not pk.verification_key.check(bytes(proof), FIELDS)

    def test_check_rejects_other_circuit(self):
        proof = derive_keys(make_artifact(b"a")).prove(b"assignment", FIELDS)
        other = derive_keys(make_artifact(b"b"))

        assert not other.verification_key.check(proof, FIELDS)

    def test_check_rejects_wrong_length(self):
        vk = derive_keys(make_artifact()).verification_key
        assert not vk.check(b"\x00" * (PROOF_SIZE - 1), FIELDS)

    def test_empty_assignment(self):
        pk = derive_keys(make_artifact())
        with pytest.raises(ProvingError):
            pk.prove(b"", FIELDS)
