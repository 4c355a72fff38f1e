from loguru import logger

from modelvault.engine.inference_engine import InferenceEngine
from modelvault.runtime.loader import ModelLoader
from modelvault.runtime.text_processing import (
    augment_with_intent,
    encode_context,
    encode_conversation_history,
    postprocess_response,
    preprocess_text,
)
from modelvault.shared.errors import ModelVaultError, PredictError
from modelvault.shared.types.feedback import ConversationContext
from modelvault.shared.types.models import ModelId


class Predictor:
    def __init__(
        self,
        loader: ModelLoader,
        engine: InferenceEngine,
        max_context_tokens: int = 500,
        history_limit: int = 5,
    ):
        self.loader = loader
        self.engine = engine
        self.max_context_tokens = max_context_tokens
        self.history_limit = history_limit

    def build_features(
        self, user_input: str, context: ConversationContext | None = None
    ) -> dict[str, str]:
        context = context or ConversationContext()
        return {
            "user_input": preprocess_text(user_input),
            "app_context": encode_context(context, self.max_context_tokens),
            "conversation_history": encode_conversation_history(
                context.history, self.history_limit
            ),
        }

    async def predict(
        self,
        model_id: ModelId,
        user_input: str,
        context: ConversationContext | None = None,
        intent: str | None = None,
    ) -> str:
        """
        Run `user_input` through `model_id` and return the cleaned-up response.
        Load failures propagate as raised by the loader.
        """
        model = await self.loader.load_model(model_id)
        if intent is not None:
            user_input = augment_with_intent(user_input, intent)
        features = self.build_features(user_input, context)

        try:
            output = await self.engine.infer(model.runtime, features)
        except ModelVaultError:
            raise
        except Exception as e:
            logger.opt(exception=e).error(f"Inference failed for {model_id}")
            raise PredictError(f"inference failed: {e}", model_id) from e

        response = output.get("response")
        if not isinstance(response, str):
            raise PredictError("engine output has no response", model_id)
        return postprocess_response(response)
