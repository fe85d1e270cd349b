"""Handles text translation using Hugging Face models."""

import logging
import torch
from transformers import AutoTokenizer, AutoModelForSeq2SeqLM

from .exceptions import TransformError
from .transform_pass import TextTransformer, TransformContext

logger = logging.getLogger(__name__)

class HuggingFaceTranslator(TextTransformer):
    """Implements subtitle translation using Hugging Face Transformers seq2seq models."""

    def __init__(self, model_name: str = "Helsinki-NLP/opus-mt-en-de", device: str = "cuda", max_length: int = 512):
        """
        Initializes the HuggingFaceTranslator.

        Args:
            model_name: The name of the Hugging Face translation model. The language
                        pair is fixed by the model (e.g. opus-mt-en-de is English to German).
            device: The device to run the model on ("cuda" or "cpu").
            max_length: Token limit for one input text.

        Raises:
            ValueError: If the specified device is invalid.
            TransformError: If the model or tokenizer fails to load.
        """
        self.model_name = model_name
        self.device = device
        self.max_length = max_length

        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA device requested but not available for translation. Falling back to CPU.")
            self.device = "cpu"
        elif self.device not in ["cuda", "cpu"]:
             raise ValueError(f"Invalid device specified: {self.device}. Choose 'cuda' or 'cpu'.")

        logger.info(f"Initializing HuggingFaceTranslator with model '{self.model_name}' on device '{self.device}'")
        try:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_name)
            self.model = AutoModelForSeq2SeqLM.from_pretrained(self.model_name)
            self.model.to(self.device)
            self.model.eval()
            logger.info(f"Hugging Face translation model '{self.model_name}' loaded successfully.")
        except Exception as e:
            logger.error(f"Failed to load translation model or tokenizer '{self.model_name}': {e}", exc_info=True)
            raise TransformError(f"Failed to load translation model/tokenizer '{self.model_name}': {e}") from e

    def transform(self, text: str, context: TransformContext) -> str:
        """
        Translates a single subtitle text.

        Seq2seq models translate sentence by sentence, so the neighbouring
        context is not fed to the model.

        Raises:
            TransformError: If the translation process fails.
        """
        if not text.strip():
            return text

        logger.debug(f"Translating: '{text[:50]}...'")
        try:
            inputs = self.tokenizer(text, return_tensors="pt", padding=True, truncation=True, max_length=self.max_length)
            inputs = {k: v.to(self.device) for k, v in inputs.items()}

            with torch.no_grad():
                translated_tokens = self.model.generate(**inputs)

            translated_text = self.tokenizer.decode(translated_tokens[0], skip_special_tokens=True)
            logger.debug(f"Translation result: '{translated_text[:50]}...'")
            return translated_text

        except Exception as e:
            logger.error(f"Error during translation of text '{text[:50]}...': {e}", exc_info=True)
            raise TransformError(f"Hugging Face translation failed: {e}") from e
