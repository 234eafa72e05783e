from world_tavern.prompts.assembler import (
    AssembledPrompt,
    TokenBreakdown,
    assemble_prompt,
    render_greeting,
)
from world_tavern.prompts.macros import MacroContext, expand_macros, macro_context
from world_tavern.prompts.templates import PromptError, render_prompt

__all__ = [
    "AssembledPrompt",
    "MacroContext",
    "PromptError",
    "TokenBreakdown",
    "assemble_prompt",
    "expand_macros",
    "macro_context",
    "render_greeting",
    "render_prompt",
]
