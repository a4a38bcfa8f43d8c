"""Cheap, model-free cluster names built from note text."""

import re

DEFAULT_CLUSTER_NAME = "New topic"
MAX_NAME_LENGTH = 10
MAX_NAME_WORDS = 3
MIN_WORD_LENGTH = 2

# Anything that is not a CJK ideograph, an ASCII letter or a digit separates words.
_SEPARATORS = re.compile(r"[^\u4e00-\u9fa5a-zA-Z0-9]+")


def generate_cluster_name(contents: list[str]) -> str:
    """Name a cluster after the first few words of its first note."""
    if not contents:
        return DEFAULT_CLUSTER_NAME

    words = [w for w in _SEPARATORS.sub(" ", contents[0] or "").split() if len(w) >= MIN_WORD_LENGTH]
    name = " ".join(words[:MAX_NAME_WORDS])[:MAX_NAME_LENGTH].strip()
    return name or DEFAULT_CLUSTER_NAME
