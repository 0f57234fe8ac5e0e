"""
Circuit registry.

The registry owns at most one :class:`CircuitBinding` per algorithm and
drives it through ``Absent -> Initializing -> Ready -> Destroying -> Absent``.
Lifecycle transitions for one algorithm are serialized by a per-algorithm
lock; proof operations on a ready binding run concurrently and are counted
so that cleanup can wait for them to finish.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import (
    CipherProofError,
    EngineError,
    NotInitializedError,
    ProvingError,
    ValidationError,
    WitnessExecutionError,
)
from ..logging import LogContext, get_logger
from .algorithms import AlgorithmDescriptor, AlgorithmLike, get_descriptor, is_supported
from .artifacts import (
    ArtifactFetcher,
    CircuitArtifact,
    CircuitArtifactLoader,
    FileSystemFetcher,
    HttpFetcher,
)
from .backends import BackendFactory, ProvingBackend, create_backend
from .core import (
    BindingState,
    PrivateInput,
    ProofArtifact,
    ProverConfig,
    PublicInput,
    private_input_from_dict,
    public_input_from_dict,
)
from .witness import WitnessCodec

logger = get_logger(__name__)

@dataclass
class CircuitBinding:
    """Live association between one algorithm and its constructed engines."""

    algorithm_id: str
    descriptor: AlgorithmDescriptor
    state: BindingState = BindingState.UNINITIALIZED
    artifact: Optional[CircuitArtifact] = None
    codec: Optional[WitnessCodec] = None
    backend: Optional[ProvingBackend] = None
    created_at: float = field(default_factory=time.time)
    ready_at: Optional[float] = None
    in_flight: int = 0
    idle: asyncio.Condition = field(default_factory=asyncio.Condition, repr=False)
    proofs_generated: int = 0
    verifications: int = 0

    @property
    def is_ready(self) -> bool:
        return self.state is BindingState.READY


class CircuitRegistry:
    """Orchestrates artifact loading, witness encoding and proving per algorithm."""

    def __init__(
        self,
        config: Optional[ProverConfig] = None,
        fetcher: Optional[ArtifactFetcher] = None,
        backend_factory: Optional[BackendFactory] = None,
    ):
        self.config = config or ProverConfig()
        self.config.validate()
        self.fetcher = fetcher or self._create_fetcher()
        self.loader = CircuitArtifactLoader(self.fetcher, self.config.backend_name)
        self.backend_factory = backend_factory or self._create_backend
        self._bindings: Dict[str, CircuitBinding] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _create_fetcher(self) -> ArtifactFetcher:
        if self.config.artifact_base_url:
            return HttpFetcher(self.config.artifact_base_url, timeout=self.config.fetch_timeout)
        return FileSystemFetcher(self.config.artifact_root)

    def _create_backend(
        self,
        descriptor: AlgorithmDescriptor,
        artifact: CircuitArtifact,
        codec: WitnessCodec,
        config: ProverConfig,
    ) -> ProvingBackend:
        return create_backend(config.backend_kind, descriptor, artifact, codec, config)

    def _lock_for(self, algorithm_id: str) -> asyncio.Lock:
        return self._locks.setdefault(algorithm_id, asyncio.Lock())

    def _context(self, algorithm_id: str, operation: str) -> LogContext:
        return LogContext(
            component="registry",
            operation=operation,
            algorithm_id=algorithm_id,
            backend_kind=self.config.backend_kind,
        )

    async def __aenter__(self) -> "CircuitRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def initialize(self, algorithm_id: AlgorithmLike) -> None:
        """Load the circuit and construct engines for ``algorithm_id``.

        Returns once the binding is ready. Calling it again, or concurrently,
        never constructs a second set of engines. On failure the algorithm is
        left absent and the error propagates.
        """
        descriptor = get_descriptor(algorithm_id)
        key = descriptor.algorithm_id
        ctx = self._context(key, "initialize")

        async with self._lock_for(key):
            existing = self._bindings.get(key)
            if existing is not None and existing.is_ready:
                logger.debug("Circuit already initialized", context=ctx)
                return

            binding = CircuitBinding(
                algorithm_id=key, descriptor=descriptor, state=BindingState.INITIALIZING
            )
            self._bindings[key] = binding
            logger.info("Initializing circuit", context=ctx)
            started = time.time()
            backend: Optional[ProvingBackend] = None
            try:
                artifact = await self.loader.load(key)
                codec = WitnessCodec(descriptor, artifact.abi, self.config.max_data_length)
                backend = self.backend_factory(descriptor, artifact, codec, self.config)
                await backend.setup()
            except BaseException as e:
                self._bindings.pop(key, None)
                binding.state = BindingState.DESTROYED
                if backend is not None:
                    await self._release(backend, ctx)
                if isinstance(e, Exception):
                    logger.error(f"Circuit initialization failed: {e}", context=ctx)
                if isinstance(e, Exception) and not isinstance(e, CipherProofError):
                    raise EngineError(
                        f"Backend construction failed for {key}: {e}",
                        backend_kind=self.config.backend_kind,
                        operation="setup",
                        cause=e,
                    ) from e
                raise

            binding.artifact = artifact
            binding.codec = codec
            binding.backend = backend
            binding.ready_at = time.time()
            binding.state = BindingState.READY
            logger.info(
                f"Circuit ready in {(binding.ready_at - started) * 1000:.1f}ms",
                context=ctx,
            )

    async def _release(self, backend: ProvingBackend, ctx: LogContext) -> None:
        try:
            await backend.destroy()
        except Exception as e:
            logger.error(f"Failed to release engines: {e}", context=ctx, exception=e)

    @asynccontextmanager
    async def _operation(self, algorithm_id: str, operation: str) -> AsyncIterator[CircuitBinding]:
        """Hold a ready binding for the duration of one proof operation."""
        binding = self._bindings.get(algorithm_id)
        if binding is None or not binding.is_ready:
            state = binding.state.value if binding is not None else "absent"
            raise NotInitializedError(
                f"Circuit for {algorithm_id} is not initialized (state: {state})",
                algorithm_id=algorithm_id,
                state=state,
            )
        binding.in_flight += 1
        try:
            yield binding
        finally:
            binding.in_flight -= 1
            if binding.in_flight == 0:
                async with binding.idle:
                    binding.idle.notify_all()

    async def generate_proof(
        self,
        algorithm_id: AlgorithmLike,
        private_input: PrivateInput,
        public_input: PublicInput,
    ) -> ProofArtifact:
        """Prove that ``public_input.ciphertext`` encrypts the private plaintext.

        Inconsistent inputs raise :class:`WitnessExecutionError`; engine
        faults raise :class:`EngineError` or :class:`ProvingError`.
        """
        descriptor = get_descriptor(algorithm_id)
        key = descriptor.algorithm_id
        if isinstance(private_input, Mapping):
            private_input = private_input_from_dict(private_input)
        if isinstance(public_input, Mapping):
            public_input = public_input_from_dict(key, public_input)
        ctx = self._context(key, "generate_proof")

        async with self._operation(key, "generate_proof") as binding:
            witness = binding.codec.to_witness(private_input, public_input)
            started = time.time()
            try:
                trace = await binding.backend.execute_circuit(witness)
            except WitnessExecutionError as e:
                if e.algorithm_id is None:
                    e.algorithm_id = key
                logger.warning(f"Inputs rejected by circuit: {e.message}", context=ctx)
                raise
            except CipherProofError as e:
                logger.error(f"Circuit execution failed: {e}", context=ctx)
                raise

            try:
                raw = await binding.backend.prove(trace)
                try:
                    signals = binding.codec.from_proof_result(raw.public_inputs)
                except ValidationError as e:
                    raise ProvingError(
                        f"Engine returned malformed public outputs: {e.message}",
                        backend_kind=binding.backend.kind,
                        retryable=False,
                        cause=e,
                    )
                if list(signals.fields) != witness.public_fields:
                    raise ProvingError(
                        "Engine public outputs do not match the witness",
                        backend_kind=binding.backend.kind,
                        retryable=False,
                    )
            except CipherProofError as e:
                logger.error(f"Proof generation failed: {e}", context=ctx)
                raise

            elapsed_ms = (time.time() - started) * 1000
            binding.proofs_generated += 1
            artifact = ProofArtifact(
                algorithm_id=key,
                proof_bytes=raw.proof,
                public_signals=signals,
                metadata={
                    "backend_kind": binding.backend.kind,
                    "proving_time_ms": elapsed_ms,
                    "proof_size": len(raw.proof),
                },
            )
            logger.info(
                f"Proof generated in {elapsed_ms:.1f}ms ({len(raw.proof)} bytes)",
                context=ctx,
            )
            return artifact

    async def verify_proof(
        self,
        algorithm_id: AlgorithmLike,
        proof_bytes: Any,
        public_signals: Any,
        public_input: PublicInput,
    ) -> bool:
        """Check a proof against a public input. Never raises."""
        key = str(algorithm_id)
        try:
            key = get_descriptor(algorithm_id).algorithm_id
            if isinstance(public_input, Mapping):
                public_input = public_input_from_dict(key, public_input)
            async with self._operation(key, "verify_proof") as binding:
                valid = bool(
                    await binding.backend.verify(proof_bytes, public_signals, public_input)
                )
                binding.verifications += 1
        except Exception as e:
            logger.warning(
                f"Verification failed with {type(e).__name__}: {e}",
                context=self._context(key, "verify_proof"),
            )
            return False

        logger.debug(
            f"Verification result: {valid}", context=self._context(key, "verify_proof")
        )
        return valid

    async def batch_verify_proofs(
        self,
        algorithm_id: AlgorithmLike,
        items: Sequence[Tuple[Any, Any, PublicInput]],
    ) -> List[bool]:
        """Verify several ``(proof, public_signals, public_input)`` triples concurrently."""
        return list(
            await asyncio.gather(
                *(self.verify_proof(algorithm_id, proof, signals, public) for proof, signals, public in items)
            )
        )

    def get_info(self, algorithm_id: AlgorithmLike) -> Optional[Dict[str, Any]]:
        """Describe an algorithm's binding, or None for unknown algorithms."""
        try:
            if not is_supported(algorithm_id):
                return None
            descriptor = get_descriptor(algorithm_id)
        except CipherProofError:
            return None

        binding = self._bindings.get(descriptor.algorithm_id)
        info: Dict[str, Any] = {
            "algorithm_id": descriptor.algorithm_id,
            "initialized": binding is not None and binding.is_ready,
            "backend_kind": self.config.backend_kind,
            "state": binding.state.value if binding is not None else "absent",
            "artifact_name": descriptor.artifact_name,
        }
        if binding is not None:
            info.update(
                {
                    "in_flight": binding.in_flight,
                    "proofs_generated": binding.proofs_generated,
                    "verifications": binding.verifications,
                    "ready_at": binding.ready_at,
                }
            )
            if binding.backend is not None:
                info["backend_kind"] = binding.backend.kind
                info["backend"] = binding.backend.get_info()
        return info

    def list(self) -> List[str]:
        """Identifiers of all ready algorithms."""
        return sorted(key for key, b in self._bindings.items() if b.is_ready)

    async def _drain(self, binding: CircuitBinding) -> None:
        async with binding.idle:
            waiter = binding.idle.wait_for(lambda: binding.in_flight == 0)
            if self.config.cleanup_drain_timeout is None:
                await waiter
            else:
                await asyncio.wait_for(waiter, self.config.cleanup_drain_timeout)

    async def cleanup(self, algorithm_id: AlgorithmLike) -> None:
        """Release an algorithm's engines after in-flight operations finish.

        Unknown or never-initialized algorithms are a no-op. Release failures
        are logged and the binding is removed anyway.
        """
        if not is_supported(algorithm_id):
            logger.debug(f"Ignoring cleanup of unknown algorithm {algorithm_id!r}")
            return
        key = get_descriptor(algorithm_id).algorithm_id
        ctx = self._context(key, "cleanup")

        async with self._lock_for(key):
            binding = self._bindings.get(key)
            if binding is None:
                return

            binding.state = BindingState.DESTROYING
            if binding.in_flight:
                logger.info(
                    f"Waiting for {binding.in_flight} in-flight operation(s)", context=ctx
                )
            try:
                await self._drain(binding)
            except asyncio.TimeoutError:
                binding.state = BindingState.READY
                raise EngineError(
                    f"Cleanup of {key} timed out with {binding.in_flight} operation(s) in flight",
                    backend_kind=binding.backend.kind if binding.backend else None,
                    operation="cleanup",
                )
            except BaseException:
                binding.state = BindingState.READY
                raise

            self._bindings.pop(key, None)
            self.loader.evict(key)
            if binding.backend is not None:
                await self._release(binding.backend, ctx)
            binding.state = BindingState.DESTROYED
            logger.info("Circuit released", context=ctx)

    async def cleanup_all(self) -> None:
        """Release every binding; individual failures are logged."""
        for key in list(self._bindings):
            try:
                await self.cleanup(key)
            except CipherProofError as e:
                logger.error(f"Cleanup failed: {e}", context=self._context(key, "cleanup"))

    async def close(self) -> None:
        """Release every binding and close the artifact fetcher."""
        await self.cleanup_all()
        await self.fetcher.close()
