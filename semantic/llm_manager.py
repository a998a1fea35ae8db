import os
import logging
from typing import Any, Dict, Optional

from config import config, ModelConfig

logger = logging.getLogger(__name__)


class LLMManager:
    """
    Thin wrapper around a local llama.cpp chat model.

    The semantic layer only needs one capability from the model: given a
    system context and a user prompt, return text. Everything else (JSON
    extraction, validation) happens in the prompt translator.
    """

    def __init__(self, model_config: Optional[ModelConfig] = None, llm: Any = None):
        self._model_config = model_config or config.model
        self.llm = llm
        self.model_loaded = llm is not None
        if self.llm is None:
            self._load_model()

    def _load_model(self) -> None:
        """Load the chat model from the configured path."""
        # Imported lazily so SQL and spec paths work without the native runtime
        from llama_cpp import Llama

        try:
            if not os.path.exists(self._model_config.model_path):
                raise FileNotFoundError(f"Model file not found: {self._model_config.model_path}")

            self.llm = Llama(
                model_path=self._model_config.model_path,
                n_ctx=self._model_config.n_ctx,
                n_threads=self._model_config.n_threads,
                n_gpu_layers=self._model_config.n_gpu_layers,
                verbose=self._model_config.verbose,
            )
            self.model_loaded = True
            logger.info(f"Loaded model {os.path.basename(self._model_config.model_path)}")

        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise RuntimeError(f"Model loading failed: {e}") from e

    def complete(self, system_prompt: str, user_prompt: str,
                 temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> str:
        """
        Run one chat completion.

        Args:
            system_prompt: Context describing the available models and the reply format
            user_prompt: The user's question
            temperature: Sampling temperature, defaults to the configured value (0.0)
            max_tokens: Output bound, defaults to the configured value (300)

        Returns:
            The raw assistant text
        """
        if not self.is_ready():
            logger.error("LLM completion failed: Model not loaded")
            raise RuntimeError("Model not loaded - cannot complete prompt")

        if not user_prompt or not isinstance(user_prompt, str):
            raise ValueError("Invalid prompt provided")

        output = self.llm.create_chat_completion(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self._model_config.temperature if temperature is None else temperature,
            max_tokens=self._model_config.max_tokens if max_tokens is None else max_tokens,
        )
        return output["choices"][0]["message"]["content"] or ""

    def is_ready(self) -> bool:
        """Check if the LLM manager is ready for use."""
        return self.model_loaded and self.llm is not None

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the loaded model."""
        return {
            "model_loaded": self.is_ready(),
            "model_path": self._model_config.model_path,
            "context_window": self._model_config.n_ctx,
            "threads": self._model_config.n_threads,
            "temperature": self._model_config.temperature,
            "max_tokens": self._model_config.max_tokens,
        }
