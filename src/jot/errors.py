"""Error types raised by the classification core."""


class JotError(Exception):
    """Base class for every error jot raises on purpose."""


class ValidationError(JotError):
    """A request or record failed validation (missing note, bad shape, illegal transition)."""


class EmbeddingError(JotError):
    """The embedding provider failed or timed out."""


class TagGenerationError(JotError):
    """The LLM tagging call failed."""


class ParseError(JotError):
    """The LLM answered with something that is not valid structured tags."""


class StoreInconsistency(JotError):
    """A cluster references notes that have no stored embedding.

    Never raised by the engine: centroid recomputation skips the dangling ids
    and logs the inconsistency. The janitor collects these as values.
    """

    def __init__(self, cluster_id: str, note_ids: list[str]):
        self.cluster_id = cluster_id
        self.note_ids = list(note_ids)
        super().__init__(
            f"cluster {cluster_id} references {len(self.note_ids)} note(s) without embedding: "
            + ", ".join(self.note_ids)
        )
