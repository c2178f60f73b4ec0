"""
Recover a JSON object from free-form model output.

Models wrap their final answer in markdown fences, lead with a sentence of prose,
or trail off with commentary. extract_json returns the first balanced top-level
object so the caller's decode sees only JSON.
"""


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[len("```"):]
    if text.endswith("```"):
        text = text[:-len("```")]
    return text.strip()


def extract_json(text: str) -> str:
    """Return the first top-level JSON object in ``text``.

    Braces inside double-quoted strings (including escaped quotes) are ignored.
    Without a ``{`` the stripped text is returned; without a matching ``}``
    everything from the first ``{`` is returned so that decoding fails with a
    useful error instead of losing data.
    """
    text = _strip_fences(text)

    start = text.find("{")
    if start < 0:
        return text

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if escaped:
            escaped = False
            continue
        if in_string:
            if c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    return text[start:]
