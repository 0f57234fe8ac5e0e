"""
Proving backend bindings.

A backend owns the circuit-execution engine and the proving/verification
engine for one algorithm. Engines are built once in :meth:`setup`, which is
the most expensive call in the system, and released in :meth:`destroy`.

Two implementations share the same contract:

- :class:`ReferenceBackend` runs constraint evaluation and proving
  in-process on a thread pool.
- :class:`OperatorBackend` delegates to a packaged prover helper (an
  "operator") exposing ``generate_witness``, ``prove`` and ``verify``.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Sequence, Type

from ..errors import (
    CipherProofError,
    ConfigurationError,
    EngineError,
    ProvingError,
    ValidationError,
    WitnessExecutionError,
)
from ..logging import LogContext, get_logger
from .algorithms import AlgorithmDescriptor
from .artifacts import CircuitArtifact
from .circuits import CircuitProgram
from .core import ProverConfig, PublicInput, RawProof, WitnessInput, WitnessTrace
from .generation import PROOF_SIZE, ProvingKey, derive_keys, key_info
from .witness import WitnessCodec

logger = get_logger(__name__)


def _proof_bytes(proof: Any) -> bytes:
    if isinstance(proof, (bytes, bytearray, memoryview)):
        return bytes(proof)
    if isinstance(proof, str):
        text = proof[2:] if proof[:2].lower() == "0x" else proof
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise ValidationError("Proof is not valid hex", field="proof")
    if isinstance(proof, (list, tuple)):
        try:
            return bytes(proof)
        except (TypeError, ValueError):
            raise ValidationError("Proof list must contain byte values", field="proof")
    raise ValidationError(
        "Proof must be bytes, hex or a list of ints",
        field="proof",
        actual=type(proof).__name__,
    )


class ProvingBackend(ABC):
    """Engine pair for one algorithm's circuit."""

    kind = "abstract"

    def __init__(
        self,
        descriptor: AlgorithmDescriptor,
        artifact: CircuitArtifact,
        codec: WitnessCodec,
        config: ProverConfig,
    ):
        self.descriptor = descriptor
        self.artifact = artifact
        self.codec = codec
        self.config = config
        self.thread_count = config.thread_count
        self.setup_count = 0
        self._ready = False

    @property
    def is_ready(self) -> bool:
        return self._ready

    def _context(self, operation: str) -> LogContext:
        return LogContext(
            component="backend",
            operation=operation,
            algorithm_id=self.descriptor.algorithm_id,
            backend_kind=self.kind,
        )

    def _require_ready(self, operation: str) -> None:
        if not self._ready:
            raise EngineError(
                f"{self.kind} engine for {self.descriptor.algorithm_id} is not initialized",
                backend_kind=self.kind,
                operation=operation,
                retryable=False,
            )

    async def setup(self) -> None:
        """Construct engines. Calling it again on a ready backend does nothing."""
        if self._ready:
            return
        self.setup_count += 1
        started = time.time()
        await self._setup()
        self._ready = True
        logger.info(
            f"Engines constructed in {(time.time() - started) * 1000:.1f}ms "
            f"with {self.thread_count} thread(s)",
            context=self._context("setup"),
        )

    async def destroy(self) -> None:
        """Release engines. Safe to call more than once."""
        if not self._ready:
            return
        self._ready = False
        await self._destroy()

    @abstractmethod
    async def _setup(self) -> None:
        pass

    async def _destroy(self) -> None:
        pass

    @abstractmethod
    async def execute_circuit(self, witness: WitnessInput) -> WitnessTrace:
        """Solve the witness; inconsistent inputs raise WitnessExecutionError."""
        pass

    @abstractmethod
    async def prove(self, trace: WitnessTrace) -> RawProof:
        """Build a proof from a solved witness; engine failures raise ProvingError."""
        pass

    @abstractmethod
    async def verify(
        self, proof_bytes: Any, public_signals: Any, public_input: PublicInput
    ) -> bool:
        """Check a proof. Invalid proofs return False; misuse raises."""
        pass

    def get_info(self) -> Dict[str, Any]:
        return {
            "backend_kind": self.kind,
            "ready": self._ready,
            "thread_count": self.thread_count,
            "circuit_hash": self.artifact.hash,
        }


class ReferenceBackend(ProvingBackend):
    """In-process execution and proving engines.

    The execution engine evaluates the circuit program from the artifact
    bytecode. The proving engine produces fixed-size transcripts with keys
    derived from the artifact (see :mod:`cipherproof.zkp.generation`).

    Despite the kind name this is not an UltraHonk prover and the proofs are
    not zero-knowledge proofs. A proof is an HMAC transcript under a key
    derived from the public circuit bytecode, so anyone holding the artifact
    can forge one. It checks that the statement holds at proving time and
    nothing more; use :class:`OperatorBackend` with a real prover when
    proofs cross a trust boundary.
    """

    kind = "reference-ultrahonk"

    def __init__(self, descriptor, artifact, codec, config):
        super().__init__(descriptor, artifact, codec, config)
        self._program: Optional[CircuitProgram] = None
        self._proving_key: Optional[ProvingKey] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    async def _setup(self) -> None:
        executor = ThreadPoolExecutor(
            max_workers=self.thread_count,
            thread_name_prefix=f"cipherproof-{self.descriptor.algorithm_id}",
        )
        try:
            loop = asyncio.get_running_loop()
            self._program = await loop.run_in_executor(
                executor, CircuitProgram.from_bytecode, self.artifact.bytecode
            )
            if self._program.key_length != self.descriptor.key_length:
                raise EngineError(
                    f"Circuit key length {self._program.key_length} does not match "
                    f"{self.descriptor.algorithm_id} ({self.descriptor.key_length})",
                    backend_kind=self.kind,
                    operation="setup",
                    retryable=False,
                )
            missing = [
                name for name in self._program.wires.values()
                if self.artifact.abi.get(name) is None
            ]
            if missing:
                raise EngineError(
                    f"Circuit program references unknown parameters: {', '.join(missing)}",
                    backend_kind=self.kind,
                    operation="setup",
                    retryable=False,
                )
            self._proving_key = await loop.run_in_executor(
                executor, derive_keys, self.artifact
            )
        except BaseException:
            executor.shutdown(wait=False)
            self._program = None
            self._proving_key = None
            raise
        self._executor = executor

    async def _destroy(self) -> None:
        executor, self._executor = self._executor, None
        self._program = None
        self._proving_key = None
        if executor is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: executor.shutdown(wait=True))

    async def _run(self, func: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _solve(self, witness: WitnessInput) -> WitnessTrace:
        self._program.execute(witness.values)
        assignment = json.dumps(witness.to_abi_dict(), sort_keys=True).encode("utf-8")
        return WitnessTrace(
            algorithm_id=witness.algorithm_id,
            circuit_hash=self.artifact.hash,
            assignment=assignment,
            public_fields=list(witness.public_fields),
        )

    async def execute_circuit(self, witness: WitnessInput) -> WitnessTrace:
        self._require_ready("execute")
        if witness.algorithm_id != self.descriptor.algorithm_id:
            raise EngineError(
                f"Witness for {witness.algorithm_id} given to "
                f"{self.descriptor.algorithm_id} engine",
                backend_kind=self.kind,
                operation="execute",
                retryable=False,
            )
        logger.debug("Executing circuit", context=self._context("execute"))
        return await self._run(self._solve, witness)

    def _prove_sync(self, trace: WitnessTrace) -> RawProof:
        if trace.circuit_hash != self.artifact.hash:
            raise ProvingError(
                "Witness trace was produced by a different circuit",
                backend_kind=self.kind,
                retryable=False,
            )
        if not trace.public_fields:
            raise ProvingError(
                "Witness trace has no public fields", backend_kind=self.kind, retryable=False
            )
        proof = self._proving_key.prove(trace.assignment, trace.public_fields)
        if len(proof) > self.config.max_proof_size:
            raise ProvingError(
                f"Proof of {len(proof)} bytes exceeds max_proof_size",
                backend_kind=self.kind,
                retryable=False,
            )
        return RawProof(proof=proof, public_inputs=list(trace.public_fields))

    async def prove(self, trace: WitnessTrace) -> RawProof:
        self._require_ready("prove")
        started = time.time()
        try:
            result = await self._run(self._prove_sync, trace)
        except CipherProofError:
            raise
        except Exception as e:
            raise ProvingError(
                f"Proving engine failed: {e}", backend_kind=self.kind, cause=e
            )
        logger.info(
            f"Proof generated in {(time.time() - started) * 1000:.1f}ms, "
            f"size: {len(result.proof)} bytes",
            context=self._context("prove"),
        )
        return result

    async def verify(
        self, proof_bytes: Any, public_signals: Any, public_input: PublicInput
    ) -> bool:
        self._require_ready("verify")
        proof = _proof_bytes(proof_bytes)
        if len(proof) != PROOF_SIZE:
            raise ValidationError(
                f"Proof must be {PROOF_SIZE} bytes, got {len(proof)}",
                field="proof",
                expected=PROOF_SIZE,
                actual=len(proof),
            )
        fields = self.codec.coerce_signals(public_signals)
        expected = self.codec.public_fields(public_input)
        if list(fields) != expected:
            logger.info(
                "Public signals do not match the public input",
                context=self._context("verify"),
            )
            return False
        verification_key = self._proving_key.verification_key
        return await self._run(verification_key.check, proof, list(fields))

    def get_info(self) -> Dict[str, Any]:
        info = super().get_info()
        if self._proving_key is not None:
            info.update(key_info(self._proving_key))
        if self._program is not None:
            info["gadget"] = self._program.gadget
        return info


# Messages the packaged prover uses for unsatisfied constraints
_CONSTRAINT_FAILURE_MARKERS = (
    "cannot satisfy constraint",
    "failed constraint",
    "assertion failed",
    "circuit execution failed",
    "unsatisfied",
)


class OperatorBackend(ProvingBackend):
    """Delegates to a packaged prover helper.

    ``operator_factory(artifact, thread_count)`` must return an object with
    async ``generate_witness(inputs) -> bytes``,
    ``prove(witness) -> (proof, public_inputs)`` and
    ``verify(public_signals, proof) -> bool``. An async ``destroy()`` is
    called on release when present.
    """

    kind = "operator"

    def __init__(self, descriptor, artifact, codec, config, operator_factory=None):
        super().__init__(descriptor, artifact, codec, config)
        factory = operator_factory or config.backend_params.get("operator_factory")
        if factory is None:
            raise ConfigurationError(
                "OperatorBackend requires an operator_factory",
                config_key="operator_factory",
            )
        self._factory = factory
        self._operator = None

    async def _setup(self) -> None:
        try:
            operator = self._factory(self.artifact, self.thread_count)
            if asyncio.iscoroutine(operator):
                operator = await operator
        except CipherProofError:
            raise
        except Exception as e:
            raise EngineError(
                f"Operator construction failed: {e}",
                backend_kind=self.kind,
                operation="setup",
                cause=e,
            )
        for method in ("generate_witness", "prove", "verify"):
            if not callable(getattr(operator, method, None)):
                raise EngineError(
                    f"Operator does not implement {method}()",
                    backend_kind=self.kind,
                    operation="setup",
                    retryable=False,
                )
        self._operator = operator

    async def _destroy(self) -> None:
        operator, self._operator = self._operator, None
        destroy = getattr(operator, "destroy", None)
        if callable(destroy):
            result = destroy()
            if asyncio.iscoroutine(result):
                await result

    async def execute_circuit(self, witness: WitnessInput) -> WitnessTrace:
        self._require_ready("execute")
        try:
            solved = await self._operator.generate_witness(witness.to_abi_dict())
        except CipherProofError:
            raise
        except Exception as e:
            message = str(e).lower()
            if any(marker in message for marker in _CONSTRAINT_FAILURE_MARKERS):
                raise WitnessExecutionError(
                    f"Circuit rejected the witness: {e}",
                    algorithm_id=witness.algorithm_id,
                    cause=e,
                )
            raise EngineError(
                f"Operator witness generation failed: {e}",
                backend_kind=self.kind,
                operation="execute",
                cause=e,
            )
        return WitnessTrace(
            algorithm_id=witness.algorithm_id,
            circuit_hash=self.artifact.hash,
            assignment=_proof_bytes(solved),
            public_fields=list(witness.public_fields),
        )

    async def prove(self, trace: WitnessTrace) -> RawProof:
        self._require_ready("prove")
        try:
            proof, public_inputs = await self._operator.prove(trace.assignment)
        except CipherProofError:
            raise
        except Exception as e:
            raise ProvingError(
                f"Operator proving failed: {e}", backend_kind=self.kind, cause=e
            )
        proof = _proof_bytes(proof)
        if not proof:
            raise ProvingError("Operator returned an empty proof", backend_kind=self.kind)
        if len(proof) > self.config.max_proof_size:
            raise ProvingError(
                f"Proof of {len(proof)} bytes exceeds max_proof_size",
                backend_kind=self.kind,
                retryable=False,
            )
        return RawProof(proof=proof, public_inputs=list(public_inputs or trace.public_fields))

    async def verify(
        self, proof_bytes: Any, public_signals: Any, public_input: PublicInput
    ) -> bool:
        self._require_ready("verify")
        proof = _proof_bytes(proof_bytes)
        if not proof or len(proof) > self.config.max_proof_size:
            raise ValidationError(
                "Proof length out of range", field="proof", actual=len(proof)
            )
        fields = self.codec.coerce_signals(public_signals)
        if list(fields) != self.codec.public_fields(public_input):
            return False
        try:
            return bool(await self._operator.verify(list(fields), proof))
        except CipherProofError:
            raise
        except Exception as e:
            # the operator reports some invalid proofs by raising
            logger.warning(
                f"Operator verification raised, treating as invalid: {e}",
                context=self._context("verify"),
            )
            return False


BACKENDS: Dict[str, Type[ProvingBackend]] = {
    ReferenceBackend.kind: ReferenceBackend,
    OperatorBackend.kind: OperatorBackend,
}

BackendFactory = Callable[
    [AlgorithmDescriptor, CircuitArtifact, WitnessCodec, ProverConfig], ProvingBackend
]


def create_backend(
    kind: str,
    descriptor: AlgorithmDescriptor,
    artifact: CircuitArtifact,
    codec: WitnessCodec,
    config: ProverConfig,
) -> ProvingBackend:
    """Instantiate a backend by kind."""
    backend_cls = BACKENDS.get(kind)
    if backend_cls is None:
        raise ConfigurationError(
            f"Unknown backend kind '{kind}'. Available: {', '.join(sorted(BACKENDS))}",
            config_key="backend_kind",
            config_value=kind,
        )
    return backend_cls(descriptor, artifact, codec, config)


def supported_backend_kinds() -> Sequence[str]:
    return sorted(BACKENDS)
