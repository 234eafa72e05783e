"""Handlebars templates for the engine-authored parts of a prompt.

Authors write entry content with `{{macros}}` (see macros.py). The blocks the
engine adds itself (game state, directive instructions, the JSON envelope
description, the running summary and the summarisation request) are
Handlebars templates rendered with pybars.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


STATE_TEMPLATE = """\
[Current game state]
{{#each variables}}- {{{name}}}: {{{value}}}
{{/each}}"""

DIRECTIVE_INSTRUCTIONS = """\
[Game mechanics]
When something in the story changes a game variable, write a directive in \
your reply using the format [variableId: operation value].
Operations: set, add, subtract, multiply, toggle, append. \
Shorthand: [gold: +50], [hp: -10]. A bare value sets the variable.
Examples: [hp: subtract 10] [location: set "Dark Forest"] [has_key: toggle]
Directives are hidden from the player; write only the ones that apply.
{{#if variables}}Variables:
{{#each variables}}- {{{id}}} ({{{type}}}){{#if hint}}: {{{hint}}}{{/if}}
{{/each}}{{/if}}\
{{#if tracks}}Audio tracks: {{#each tracks}}{{{this}}} {{/each}}
Control audio with [trackId: play], [trackId: stop 2], [trackId: volume 0.5] \
or [trackId: crossfade otherTrack 3].
{{/if}}\
{{#if choices}}End your reply with two to four options for the player as a \
lettered list, one per line: A) ..., B) ...
{{/if}}"""

STRUCTURED_INSTRUCTIONS = """\
[Response format]
Reply with a single JSON object and nothing else:
{"narrative": "<story text shown to the player>", \
"stateChanges": [{"variableId": "<id>", "operation": "<set|add|subtract|multiply|toggle|append>", "value": <value>}], \
"choices": ["<option>", ...], \
"audioTriggers": [{"trackId": "<id>", "action": "<play|stop|crossfade|volume>"}]}
{{#if variables}}Variables:
{{#each variables}}- {{{id}}} ({{{type}}}){{#if hint}}: {{{hint}}}{{/if}}
{{/each}}{{/if}}\
{{#if tracks}}Audio tracks: {{#each tracks}}{{{this}}} {{/each}}
{{/if}}\
Use an empty list when nothing changes."""

SUMMARY_TEMPLATE = """\
[Story so far]
{{{summary}}}"""

SUMMARIZATION_TEMPLATE = """\
{{#if previous}}Previous summary:
{{{previous}}}

New messages to fold into the summary:
{{/if}}\
{{#each messages}}{{{role}}}: {{{content}}}

{{/each}}"""

SUMMARIZATION_SYSTEM_PROMPT = (
    "You condense role-play transcripts. Write a concise summary in past tense "
    "that keeps names, places, promises, unresolved threads and every fact the "
    "story may rely on later. If a previous summary is given, merge it with the "
    "new messages into one summary. Reply with the summary only."
)

CONTINUE_INSTRUCTION = (
    "[Continue your previous reply from exactly where it stopped. "
    "Do not repeat what is already written.]"
)
