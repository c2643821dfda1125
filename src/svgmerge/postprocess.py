"""Turn the composite tree into the final text written to disk."""
from __future__ import annotations

import re
from typing import Callable, List

from .markup import Document, local_name, serialize
from .optimize import optimize

# Everything that can retime an animation, break an href/xlink:href or
# url(#...) reference, restructure groups or touch path geometry.
ANIMATION_SAFE_OVERRIDES = {
    "remove_view_box": False,
    "remove_hidden_elems": False,
    "remove_useless_defs": False,
    "convert_shape_to_path": False,
    "move_elems_attrs_to_group": False,
    "move_group_attrs_to_elems": False,
    "collapse_groups": False,
    "convert_path_data": False,
    "remove_empty_attrs": False,
    "remove_empty_containers": False,
    "merge_paths": False,
    "remove_unknowns_and_defaults": False,
    "remove_non_inheritable_group_attrs": False,
    "inline_styles": False,
    "minify_styles": False,
    "cleanup_ids": False,
    "remove_proc_inst": False,
}

_DOUBLE_ESCAPED_ENTITY_RE = re.compile(r"&amp;(amp|lt|gt|quot|apos|#[0-9]+|#x[0-9A-Fa-f]+);")
# Bodies never span a raw "<": an escaped artifact has no real markup inside.
_ESCAPED_CDATA_RE = re.compile(r"&lt;!\[CDATA\[([^<]*?)\]\]&gt;")
_ESCAPED_SCRIPT_RE = re.compile(r"&lt;script\b([^<>]*?)&gt;([^<]*?)&lt;/script&gt;")

# Tokens of serialized markup; everything between two tokens is character data.
_MARKUP_TOKEN_RE = re.compile(
    r"<!--.*?-->|<!\[CDATA\[.*?\]\]>|<\?.*?\?>"
    r'|<(/?)([^\s<>/!?]+)(?:\s+[^\s<>=]+="[^"]*")*\s*(/?)>',
    re.DOTALL,
)

# Escaped tags inside these are what the image shows, not markup to restore.
TEXT_LABEL_ELEMENTS = {"text", "tspan", "textPath", "title", "desc"}


def _map_character_data(text: str, repair: Callable[[str, bool], str]) -> str:
    """Apply ``repair(chunk, in_label)`` to each run of character data.

    Tags, comments, CDATA sections and processing instructions pass through
    untouched, so a rule never rewrites an attribute value or matches across
    element boundaries.
    """
    parts: List[str] = []
    open_elements: List[str] = []
    position = 0
    for match in _MARKUP_TOKEN_RE.finditer(text):
        in_label = any(name in TEXT_LABEL_ELEMENTS for name in open_elements)
        parts.append(repair(text[position:match.start()], in_label))
        parts.append(match.group(0))
        position = match.end()
        closing, name, self_closing = match.group(1, 2, 3)
        if name is None or self_closing:
            continue
        if closing:
            if open_elements:
                open_elements.pop()
        else:
            open_elements.append(local_name(name))
    in_label = any(name in TEXT_LABEL_ELEMENTS for name in open_elements)
    parts.append(repair(text[position:], in_label))
    return "".join(parts)


def _unescape_cdata(match: re.Match) -> str:
    body = match.group(1).replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&")
    return f"<![CDATA[{body}]]>"


def _collapse_double_escapes(text: str) -> str:
    return _DOUBLE_ESCAPED_ENTITY_RE.sub(r"&\1;", text)


def _expand_cdata(text: str) -> str:
    return _map_character_data(text, lambda chunk, _in_label: _ESCAPED_CDATA_RE.sub(_unescape_cdata, chunk))


def _expand_scripts(text: str) -> str:
    def repair(chunk: str, in_label: bool) -> str:
        if in_label:
            return chunk
        return _ESCAPED_SCRIPT_RE.sub(r"<script\1>\2</script>", chunk)

    return _map_character_data(text, repair)


# Applied in order. Collapsing double-escaped entities first lets a doubly
# escaped CDATA marker or script tag be picked up by the later rules.
REPAIR_RULES = (
    ("double-escaped entities", _collapse_double_escapes),
    ("escaped CDATA sections", _expand_cdata),
    ("escaped script elements", _expand_scripts),
)


def repair_escaping(text: str) -> str:
    """Undo escaping artifacts that break embedded script and style content.

    Rules, in order:

    1. ``&amp;lt;`` (and ``amp``, ``gt``, ``quot``, ``apos``, numeric
       references) collapses to the single-escaped entity.
    2. A paired ``&lt;![CDATA[ ... ]]&gt;`` within one run of character data
       becomes a real CDATA section; its body is unescaped because CDATA
       content is literal.
    3. A paired ``&lt;script ...&gt; ... &lt;/script&gt;`` within one run of
       character data becomes a real ``<script>`` element, except inside text
       labels (``text``, ``tspan``, ``textPath``, ``title``, ``desc``). The
       body stays escaped, which is still valid XML.
    """
    for _name, rule in REPAIR_RULES:
        text = rule(text)
    return text


def render(document: Document) -> str:
    """Serialized composite before optimization."""
    return repair_escaping(serialize(document))


# Named override sets; "default" runs every pass of PRESET_DEFAULT.
PROFILES = {
    "animation-safe": ANIMATION_SAFE_OVERRIDES,
    "default": {},
}


def optimize_profile(text: str, profile: str = "animation-safe") -> str:
    if profile not in PROFILES:
        raise ValueError(f"unknown optimizer profile: {profile} (expected one of: {', '.join(sorted(PROFILES))})")
    return optimize(text, overrides=PROFILES[profile])


def optimize_animation_safe(text: str) -> str:
    return optimize_profile(text, "animation-safe")


def postprocess(document: Document, optimize_output: bool = True) -> str:
    text = render(document)
    if not optimize_output:
        return text
    return optimize_animation_safe(text)
