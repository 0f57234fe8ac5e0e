"""Retry wrapper around a circuit registry."""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import RetryPolicy, execute_with_retry
from ..logging import get_logger
from .algorithms import AlgorithmLike
from .core import PrivateInput, ProofArtifact, PublicInput
from .registry import CircuitRegistry

logger = get_logger(__name__)


class RetryingRegistry:
    """Applies a :class:`RetryPolicy` to the registry's public calls.

    Only errors marked retryable (artifact fetches, engine faults) are
    retried. Validation, configuration, lifecycle and witness errors are
    raised on the first attempt. ``verify_proof`` is passed through as is
    since it never raises.
    """

    def __init__(
        self,
        registry: CircuitRegistry,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.registry = registry
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def _call(self, operation: str, func, *args) -> Any:
        return await execute_with_retry(self.policy, operation, func, *args, sleep=self._sleep)

    async def initialize(self, algorithm_id: AlgorithmLike) -> None:
        await self._call("initialize", self.registry.initialize, algorithm_id)

    async def generate_proof(
        self,
        algorithm_id: AlgorithmLike,
        private_input: PrivateInput,
        public_input: PublicInput,
    ) -> ProofArtifact:
        return await self._call(
            "generate_proof",
            self.registry.generate_proof,
            algorithm_id,
            private_input,
            public_input,
        )

    async def verify_proof(
        self,
        algorithm_id: AlgorithmLike,
        proof_bytes: Any,
        public_signals: Any,
        public_input: PublicInput,
    ) -> bool:
        return await self.registry.verify_proof(
            algorithm_id, proof_bytes, public_signals, public_input
        )

    async def cleanup(self, algorithm_id: AlgorithmLike) -> None:
        await self._call("cleanup", self.registry.cleanup, algorithm_id)

    async def cleanup_all(self) -> None:
        await self.registry.cleanup_all()

    def get_info(self, algorithm_id: AlgorithmLike) -> Optional[Dict[str, Any]]:
        return self.registry.get_info(algorithm_id)

    def list(self) -> List[str]:
        return self.registry.list()
