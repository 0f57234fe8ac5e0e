"""
Message interface for a transport layer.

Requests and responses are plain dicts so any framing (extension message
passing, JSON over a socket, a job queue) can carry them::

    {"action": "GENERATE_PROOF", "algorithmId": "aes-128-ctr",
     "inputs": {"key": ..., "plaintext": ..., "ciphertext": ...,
                "nonceOrIV": ..., "byteOffset": 0}}

    {"action": "VERIFY_PROOF", "algorithmId": "aes-128-ctr",
     "inputs": {"proof": "<hex>", "publicSignals": [...],
                "ciphertext": ..., "nonceOrIV": ..., "byteOffset": 0}}
"""

from typing import Any, Dict, Mapping

from ..errors import CipherProofError, ValidationError
from ..logging import LogContext, get_logger
from .core import ProofRequest, public_input_from_dict
from .registry import CircuitRegistry

logger = get_logger(__name__)

GENERATE_PROOF = "GENERATE_PROOF"
VERIFY_PROOF = "VERIFY_PROOF"


def error_response(error: BaseException) -> Dict[str, Any]:
    if isinstance(error, CipherProofError):
        response = {
            "success": False,
            "error": error.message,
            "errorType": type(error).__name__,
        }
        if error.error_code:
            response["errorCode"] = error.error_code
        return response
    return {"success": False, "error": str(error), "errorType": type(error).__name__}


def _require_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(
            f"Field '{name}' must be an object",
            field=name,
            expected="object",
            actual=type(value).__name__,
        )
    return value


async def _generate(registry: CircuitRegistry, algorithm_id: str, inputs: Mapping[str, Any]):
    request = ProofRequest.from_dict(algorithm_id, inputs)
    await registry.initialize(request.algorithm_id)
    artifact = await registry.generate_proof(
        request.algorithm_id, request.private_input, request.public_input
    )
    return {
        "success": True,
        "proof": artifact.proof_bytes.hex(),
        "publicSignals": artifact.public_signals.to_list(),
        "metadata": dict(artifact.metadata),
    }


async def _verify(registry: CircuitRegistry, algorithm_id: str, inputs: Mapping[str, Any]):
    if "proof" not in inputs:
        raise ValidationError("Missing required field 'proof'", field="proof")
    if "publicSignals" not in inputs:
        raise ValidationError("Missing required field 'publicSignals'", field="publicSignals")
    public_input = public_input_from_dict(algorithm_id, inputs.get("publicInput", inputs))
    await registry.initialize(algorithm_id)
    valid = await registry.verify_proof(
        algorithm_id, inputs["proof"], inputs["publicSignals"], public_input
    )
    return {"success": True, "valid": valid}


_HANDLERS = {
    GENERATE_PROOF: _generate,
    VERIFY_PROOF: _verify,
}


async def handle_message(registry: CircuitRegistry, message: Any) -> Dict[str, Any]:
    """Dispatch one request. Never raises; failures become ``success: False``."""
    try:
        message = _require_mapping(message, "message")
        action = message.get("action")
        handler = _HANDLERS.get(action) if isinstance(action, str) else None
        if handler is None:
            raise ValidationError(
                f"Unknown action {action!r}",
                field="action",
                expected=f"{GENERATE_PROOF} or {VERIFY_PROOF}",
                actual=action,
            )
        algorithm_id = message.get("algorithmId")
        if not algorithm_id:
            raise ValidationError("Missing required field 'algorithmId'", field="algorithmId")
        inputs = _require_mapping(message.get("inputs"), "inputs")
        return await handler(registry, algorithm_id, inputs)
    except Exception as e:
        context = LogContext(
            component="transport",
            operation=str(message.get("action")) if isinstance(message, Mapping) else None,
        )
        if isinstance(e, CipherProofError):
            logger.warning(f"Request failed: {e}", context=context)
        else:
            logger.exception(f"Unexpected failure handling request: {e}", context=context, exception=e)
        return error_response(e)
