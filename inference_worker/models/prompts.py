# models/prompts.py
"""
Conversational prompt templates for instruction-tuned completion models.

A transcript is rendered as a chain of [INST] blocks; the system prompt, when
set, rides inside the first block:

<s>[INST] <<SYS>>system<</SYS>>

q1 [/INST] r1</s><s>[INST] q2 [/INST]
"""

from typing import Iterable

from inference_worker.schemas.job_models import Turn

BOS = "<s>"
EOS = "</s>"
SYSTEM_BLOCK_TEMPLATE = "<<SYS>>{system}<</SYS>>\n\n"
TURN_TEMPLATE = BOS + "[INST] {query} [/INST] {response}" + EOS
OPEN_TURN_TEMPLATE = BOS + "[INST] {query} [/INST]"


def build_prompt(system_prompt: str, turns: Iterable[Turn], new_input: str) -> str:
    """
    Render prior turns plus the new user input into one prompt string.

    Deterministic: same system prompt, turns and input give the same prompt.
    """
    system_block = SYSTEM_BLOCK_TEMPLATE.format(system=system_prompt) if system_prompt else ""

    parts = []
    for turn in turns:
        parts.append(TURN_TEMPLATE.format(query=system_block + turn.query, response=turn.response))
        system_block = ""

    parts.append(OPEN_TURN_TEMPLATE.format(query=system_block + new_input))
    return "".join(parts)
