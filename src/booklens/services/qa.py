"""Question answering over an extracted document."""

from __future__ import annotations

import logging

from langchain_core.prompts import PromptTemplate

from ..llm import ModelGateway, strip_reasoning
from ..logs import log_llm_response

__all__ = ["DEFAULT_CONTEXT_CHARS", "DocumentQA"]

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_CHARS = 8000

QA_TEMPLATE = """You are an AI assistant engaging in a conversation about a PDF document.
If you need to think through your answer, place your thinking inside <think> </think> tags.
This thinking will be hidden from the user, so make sure your final answer outside these tags is complete.

FORMAT YOUR RESPONSE USING MARKDOWN:
- Use **bold** for emphasis
- Use *italics* for subtle emphasis
- Use ## headings to organize longer answers
- Use numbered lists (1. 2. 3.) for steps or sequences
- Use bullet points for lists of items
- Use `code` for technical terms
- Use ```code blocks``` for examples
- Use > for quoting text from the document

Here's the content from the document:

{context}

Question: {question}

Answer (using Markdown formatting):"""


class DocumentQA:
    """Answers free-form questions using the beginning of a document as context."""

    def __init__(self, gateway: ModelGateway, *, context_chars: int = DEFAULT_CONTEXT_CHARS) -> None:
        self._gateway = gateway
        self._context_chars = context_chars
        self._prompt = PromptTemplate.from_template(QA_TEMPLATE)

    def build_prompt(self, document_text: str, question: str) -> str:
        return self._prompt.format(context=document_text[: self._context_chars], question=question.strip())

    def ask(self, document_text: str, question: str) -> str:
        if not question or not question.strip():
            raise ValueError("Question is required")
        response = self._gateway.generate(self.build_prompt(document_text, question))
        log_llm_response(logger, "Question", response)
        return strip_reasoning(response).strip()
