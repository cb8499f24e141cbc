"""Answer quality judges.

- Faithfulness: an LLM judge rates how well the answer is grounded in the
  context, as a single number in [0, 1].
- Similarity: cosine similarity between answer and ground-truth embeddings.
"""

import asyncio
import logging
import re
from typing import Optional

from src.ragtrust.clients import Embedder, Generator
from src.ragtrust.evals.metrics import cosine_similarity
from src.ragtrust.models import clamp01
from src.ragtrust.prompts import build_faithfulness_prompt

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r"([0-9]*\.?[0-9]+)")


def parse_faithfulness(response: str) -> float:
    """First number in the judge output, clamped to [0, 1]; 0 if none."""
    match = NUMBER_PATTERN.search(response or "")
    if not match:
        logger.warning("Faithfulness judge returned no score: %r", (response or "")[:80])
        return 0.0
    return clamp01(float(match.group(1)))


async def evaluate_faithfulness(
    generator: Generator,
    context: str,
    answer: str,
    model: Optional[str] = None,
) -> float:
    """Ask the judge model how grounded the answer is in the context."""
    response = await generator.generate(build_faithfulness_prompt(context, answer), model)
    return parse_faithfulness(response)


async def answer_similarity(embedder: Embedder, answer: str, ground_truth: str) -> Optional[float]:
    """Cosine similarity of answer and ground-truth embeddings.

    Both texts are embedded concurrently.

    Returns:
        Similarity, or None when it is undefined (zero-norm or non-finite)
    """
    answer_vec, truth_vec = await asyncio.gather(
        embedder.embed(answer),
        embedder.embed(ground_truth),
    )
    return cosine_similarity(answer_vec, truth_vec)
