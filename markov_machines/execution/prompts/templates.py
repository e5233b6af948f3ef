"""
Prompt template names.

Each constant is the stem of a file under `templates/`; the loader checks they
all exist when it is imported.
"""


class Template:
    SYSTEM_PROMPT = "system_prompt"  # node instructions + state + transitions + context blocks
