"""Shared fixtures and cipher helpers for the cipherproof test suite."""

import pytest
import pytest_asyncio
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from cipherproof.logging import LogConfig, LogLevel, MemoryHandler, setup_logging, shutdown_logging
from cipherproof.zkp import CircuitRegistry, PrivateInput, ProverConfig, PublicInput

AES128_KEY = bytes.fromhex("7E24067817FAE0D743D6CE1F32539163")
AES256_KEY = bytes.fromhex(
    "7E24067817FAE0D743D6CE1F32539163B1A2C3D4E5F6071819A0B1C2D3E4F506"
)
AES_NONCE = bytes.fromhex("006CB6DBC0543B59DA48D90B")

CHACHA_KEY = bytes(range(32))
CHACHA_NONCE = bytes.fromhex("000000090000004a00000000")
CHACHA_PLAINTEXT = bytes.fromhex(
    "4c616469657320616e642047656e746c656d656e206f662074686520636c6173"
)

PLAINTEXT = b"The quick brown fox jumps over the lazy dog, twice over."


def aes_ctr_encrypt(key: bytes, nonce: bytes, plaintext: bytes, counter: int = 1) -> bytes:
    block = nonce + counter.to_bytes(4, "big")
    encryptor = Cipher(algorithms.AES(key), modes.CTR(block), backend=default_backend()).encryptor()
    return encryptor.update(plaintext) + encryptor.finalize()


def chacha20_encrypt(key: bytes, nonce: bytes, plaintext: bytes, counter: int = 1) -> bytes:
    full_nonce = counter.to_bytes(4, "little") + nonce
    encryptor = Cipher(
        algorithms.ChaCha20(key, full_nonce), mode=None, backend=default_backend()
    ).encryptor()
    return encryptor.update(plaintext) + encryptor.finalize()


def make_inputs(algorithm_id: str, plaintext: bytes = PLAINTEXT, byte_offset: int = 0):
    """Consistent (private, public) inputs for a built-in algorithm."""
    if algorithm_id == "chacha20":
        counter = 1 + byte_offset // 64
        ciphertext = chacha20_encrypt(CHACHA_KEY, CHACHA_NONCE, plaintext, counter)
        return (
            PrivateInput(key=CHACHA_KEY, plaintext=plaintext),
            PublicInput(ciphertext=ciphertext, nonce=CHACHA_NONCE, byte_offset=byte_offset),
        )
    key = AES128_KEY if algorithm_id == "aes-128-ctr" else AES256_KEY
    counter = 1 + byte_offset // 16
    ciphertext = aes_ctr_encrypt(key, AES_NONCE, plaintext, counter)
    return (
        PrivateInput(key=key, plaintext=plaintext),
        PublicInput(ciphertext=ciphertext, nonce=AES_NONCE, byte_offset=byte_offset),
    )


@pytest.fixture
def memory_logs():
    """Route cipherproof logging into memory for the duration of a test."""
    manager = setup_logging(LogConfig(name="tests", level=LogLevel.TRACE, handlers=[]))
    handler = MemoryHandler(max_size=1000)
    manager.add_handler("memory", handler)
    yield handler
    shutdown_logging()


@pytest.fixture
def prover_config():
    return ProverConfig(thread_count=2)


@pytest_asyncio.fixture
async def registry(prover_config):
    registry = CircuitRegistry(prover_config)
    yield registry
    await registry.close()
