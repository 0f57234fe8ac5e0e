"""
Circuit artifact loading.

Compiled circuits ship as JSON artifacts::

    {
      "noir_version": "...",
      "hash": "<sha256 of the decoded bytecode>",
      "abi": {"parameters": [{"name": ..., "type": {...}, "visibility": ...}]},
      "bytecode": "<base64>"
    }

Raw bytes come from an :class:`ArtifactFetcher`; the
:class:`CircuitArtifactLoader` parses them once per algorithm and caches the
result until it is explicitly evicted.
"""

import asyncio
import base64
import binascii
import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from ..errors import ArtifactLoadError
from ..logging import LogContext, get_logger
from .algorithms import AlgorithmLike, get_descriptor

logger = get_logger(__name__)

BUNDLED_CIRCUITS_DIR = Path(__file__).resolve().parent.parent / "circuits"


@dataclass(frozen=True)
class AbiParameter:
    """One circuit parameter.

    ``kind`` is ``"array"`` (of unsigned integers of ``width`` bits) or
    ``"integer"``. An array ``length`` of None means the circuit accepts
    any length.
    """

    name: str
    kind: str
    visibility: str
    width: int = 8
    length: Optional[int] = None

    @property
    def is_public(self) -> bool:
        return self.visibility == "public"

    @property
    def is_array(self) -> bool:
        return self.kind == "array"


@dataclass(frozen=True)
class CircuitAbi:
    """Ordered circuit interface description."""

    parameters: Tuple[AbiParameter, ...]

    def get(self, name: str) -> Optional[AbiParameter]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.parameters)

    @property
    def public_parameters(self) -> Tuple[AbiParameter, ...]:
        return tuple(p for p in self.parameters if p.is_public)


def _parse_parameter(raw: Dict[str, Any]) -> AbiParameter:
    type_info = raw["type"]
    kind = type_info["kind"]
    visibility = raw.get("visibility", "private")
    if visibility not in ("public", "private"):
        raise ValueError(f"invalid visibility {visibility!r}")
    if kind == "array":
        element = type_info["type"]
        if element.get("kind") != "integer" or element.get("sign", "unsigned") != "unsigned":
            raise ValueError(f"unsupported array element type for {raw['name']}")
        length = type_info.get("length")
        if length is not None and (not isinstance(length, int) or length <= 0):
            raise ValueError(f"invalid length for {raw['name']}")
        return AbiParameter(
            name=raw["name"],
            kind="array",
            visibility=visibility,
            width=int(element.get("width", 8)),
            length=length,
        )
    if kind == "integer":
        return AbiParameter(
            name=raw["name"],
            kind="integer",
            visibility=visibility,
            width=int(type_info.get("width", 32)),
        )
    raise ValueError(f"unsupported parameter kind {kind!r}")


@dataclass(frozen=True)
class CircuitArtifact:
    """Immutable compiled circuit: bytecode plus interface description."""

    name: str
    bytecode: bytes
    abi: CircuitAbi
    noir_version: str
    hash: str

    @classmethod
    def from_bytes(cls, name: str, raw: bytes) -> "CircuitArtifact":
        """Parse a serialized artifact. Malformed input raises ArtifactLoadError."""
        try:
            document = json.loads(raw.decode("utf-8"))
            bytecode = base64.b64decode(document["bytecode"], validate=True)
            parameters = tuple(
                _parse_parameter(p) for p in document["abi"]["parameters"]
            )
            declared_hash = str(document["hash"])
            noir_version = str(document.get("noir_version", "unknown"))
        except (UnicodeDecodeError, json.JSONDecodeError, binascii.Error) as e:
            raise ArtifactLoadError(
                f"Malformed circuit artifact {name}: {e}", artifact_name=name, cause=e
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ArtifactLoadError(
                f"Circuit artifact {name} is missing or has invalid field: {e}",
                artifact_name=name,
                cause=e,
            )

        if not bytecode:
            raise ArtifactLoadError(f"Circuit artifact {name} has empty bytecode", artifact_name=name)

        digest = hashlib.sha256(bytecode).hexdigest()
        if digest != declared_hash:
            raise ArtifactLoadError(
                f"Circuit artifact {name} hash mismatch",
                artifact_name=name,
                metadata={"declared": declared_hash, "actual": digest},
            )

        names = [p.name for p in parameters]
        if len(set(names)) != len(names):
            raise ArtifactLoadError(
                f"Circuit artifact {name} declares duplicate parameters", artifact_name=name
            )

        return cls(
            name=name,
            bytecode=bytecode,
            abi=CircuitAbi(parameters),
            noir_version=noir_version,
            hash=digest,
        )


class ArtifactFetcher(ABC):
    """Supplies raw artifact bytes for ``(backend_name, artifact_filename)``."""

    @abstractmethod
    async def fetch(self, backend_name: str, artifact_filename: str) -> bytes:
        """Fetch artifact bytes. Missing resources raise ArtifactLoadError."""
        pass

    async def close(self) -> None:
        """Release fetcher resources."""
        pass


def _check_component(value: str, what: str) -> None:
    if not value or "/" in value or "\\" in value or value in (".", ".."):
        raise ArtifactLoadError(f"Invalid {what}: {value!r}", artifact_name=value)


class FileSystemFetcher(ArtifactFetcher):
    """Reads ``<root>/<backend_name>/<artifact_filename>``."""

    def __init__(self, root: Union[str, Path, None] = None):
        self.root = Path(root) if root is not None else BUNDLED_CIRCUITS_DIR

    async def fetch(self, backend_name: str, artifact_filename: str) -> bytes:
        _check_component(backend_name, "backend name")
        _check_component(artifact_filename, "artifact filename")
        path = self.root / backend_name / artifact_filename
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except FileNotFoundError:
            raise ArtifactLoadError(
                f"Resource not found: {backend_name}/{artifact_filename}",
                backend_name=backend_name,
                artifact_name=artifact_filename,
                error_code="RESOURCE_NOT_FOUND",
            )
        except OSError as e:
            raise ArtifactLoadError(
                f"Failed to read {path}: {e}",
                backend_name=backend_name,
                artifact_name=artifact_filename,
                cause=e,
            )


class HttpFetcher(ArtifactFetcher):
    """Downloads ``<base_url>/<backend_name>/<artifact_filename>`` with aiohttp."""

    def __init__(self, base_url: str, timeout: float = 30.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self):
        import aiohttp

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def fetch(self, backend_name: str, artifact_filename: str) -> bytes:
        import aiohttp

        _check_component(backend_name, "backend name")
        _check_component(artifact_filename, "artifact filename")
        url = f"{self.base_url}/{backend_name}/{artifact_filename}"
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status == 404:
                    raise ArtifactLoadError(
                        f"Resource not found: {url}",
                        backend_name=backend_name,
                        artifact_name=artifact_filename,
                        error_code="RESOURCE_NOT_FOUND",
                    )
                if response.status != 200:
                    raise ArtifactLoadError(
                        f"Fetching {url} failed with HTTP {response.status}",
                        backend_name=backend_name,
                        artifact_name=artifact_filename,
                    )
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ArtifactLoadError(
                f"Fetching {url} failed: {e}",
                backend_name=backend_name,
                artifact_name=artifact_filename,
                cause=e,
            )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class CircuitArtifactLoader:
    """Loads and caches one artifact per algorithm.

    Only successful parses are cached, so a failed fetch is retried on the
    next call. Concurrent loads of the same algorithm share a single fetch.
    """

    def __init__(self, fetcher: ArtifactFetcher, backend_name: str = "barretenberg"):
        self.fetcher = fetcher
        self.backend_name = backend_name
        self._cache: Dict[str, CircuitArtifact] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.fetch_count = 0

    async def load(self, algorithm_id: AlgorithmLike) -> CircuitArtifact:
        """Return the artifact for ``algorithm_id``, fetching it on first use."""
        descriptor = get_descriptor(algorithm_id)
        key = descriptor.algorithm_id

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            ctx = LogContext(operation="load_artifact", algorithm_id=key)
            logger.info(
                f"Loading circuit {self.backend_name}/{descriptor.artifact_name}",
                context=ctx,
            )
            self.fetch_count += 1
            try:
                raw = await self.fetcher.fetch(self.backend_name, descriptor.artifact_name)
            except ArtifactLoadError:
                raise
            except Exception as e:
                raise ArtifactLoadError(
                    f"Fetcher failed for {self.backend_name}/{descriptor.artifact_name}: {e}",
                    backend_name=self.backend_name,
                    artifact_name=descriptor.artifact_name,
                    cause=e,
                )

            artifact = CircuitArtifact.from_bytes(descriptor.artifact_name, raw)
            self._cache[key] = artifact
            logger.info(
                f"Circuit loaded (noir {artifact.noir_version}, "
                f"{len(artifact.abi.parameters)} parameters)",
                context=ctx,
            )
            return artifact

    def is_cached(self, algorithm_id: AlgorithmLike) -> bool:
        return get_descriptor(algorithm_id).algorithm_id in self._cache

    def evict(self, algorithm_id: AlgorithmLike) -> None:
        """Drop a cached artifact; the next load fetches again."""
        self._cache.pop(get_descriptor(algorithm_id).algorithm_id, None)

    def clear(self) -> None:
        self._cache.clear()
