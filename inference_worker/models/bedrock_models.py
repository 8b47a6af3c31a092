# models/bedrock_models.py
from typing import Any, Dict, Optional
import json

from botocore.exceptions import BotoCoreError, ClientError

from inference_worker.core.config import Settings, settings as default_settings
from inference_worker.core.errors import InferenceFailure, InferenceFailureKind
from inference_worker.core.logger import logger
from inference_worker.models.prompts import build_prompt
from inference_worker.schemas.job_models import ConversationContext


class BedrockModels:
    """
    Inference client over the Bedrock Runtime invoke_model API.

    Owns prompt assembly; every provider error surfaces as InferenceFailure.
    """

    def __init__(self, runtime_client, settings: Settings = default_settings):
        self.runtime_client = runtime_client
        self.settings = settings
        self.model_id = settings.BEDROCK_MODEL_ID

    def build_request_body(self, prompt: str) -> Dict[str, Any]:
        """
        Sampling parameters come from configuration, never from the job.
        """
        return {
            "prompt": prompt,
            "max_tokens": self.settings.MAX_TOKENS,
            "temperature": self.settings.TEMPERATURE,
            "top_p": self.settings.TOP_P,
            "top_k": self.settings.TOP_K,
            "stop": list(self.settings.STOP_SEQUENCES),
        }

    def complete(self, user_id: str, new_input: str, context: Optional[ConversationContext] = None) -> Any:
        """
        Generate one completion for `new_input` given the user's prior turns.

        Args:
            user_id: Identity the context belongs to (used for logging)
            new_input: The user's new message
            context: Prior turns; None is treated as a fresh session

        Returns:
            The raw `text` of the first output, unvalidated

        Raises:
            InferenceFailure: network errors, non-2xx responses or an
                unusable response body
        """
        turns = context.turns if context is not None else []
        prompt = build_prompt(self.settings.SYSTEM_PROMPT, turns, new_input)

        logger.debug(
            f"Invoking model {self.model_id}",
            extra={"user_id": user_id, "prior_turns": len(turns), "prompt_chars": len(prompt)}
        )

        try:
            response = self.runtime_client.invoke_model(
                modelId=self.model_id,
                body=json.dumps(self.build_request_body(prompt)),
                contentType="application/json",
                accept="application/json"
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            raise InferenceFailure(
                f"Bedrock returned {status} {error.get('Code', 'Unknown')}: {error.get('Message', str(e))}",
                kind=InferenceFailureKind.HTTP_STATUS,
                status_code=status,
            ) from e
        except BotoCoreError as e:
            raise InferenceFailure(
                f"Bedrock transport error: {e}",
                kind=InferenceFailureKind.TRANSPORT,
            ) from e

        return self._extract_text(response)

    @staticmethod
    def _extract_text(response: Dict[str, Any]) -> Any:
        """
        Pull outputs[0].text out of an invoke_model response.

        Expected body shape:
        {"outputs": [{"text": "...", "stop_reason": "stop"}]}
        """
        try:
            payload = json.loads(response["body"].read())
        except (KeyError, AttributeError, ValueError, BotoCoreError) as e:
            raise InferenceFailure(
                f"Unreadable response body from Bedrock: {e}",
                kind=InferenceFailureKind.MALFORMED_RESPONSE,
            ) from e

        outputs = payload.get("outputs") if isinstance(payload, dict) else None
        if not outputs or not isinstance(outputs, list) or not isinstance(outputs[0], dict) or "text" not in outputs[0]:
            raise InferenceFailure(
                "Invalid or empty response structure from Bedrock",
                kind=InferenceFailureKind.MALFORMED_RESPONSE,
            )

        first = outputs[0]
        if first.get("stop_reason") == "length":
            logger.warning("Completion truncated at max_tokens")
        return first["text"]
