"""Exception hierarchy for the memory engine.

None of these escape to the message-send path: the trigger resolves its
read errors to "do not compress", the worker contains every compaction
failure, and the context assembler degrades instead of raising.
"""


class MemoryEngineError(Exception):
    """Base class for memory engine errors."""


class EstimationError(MemoryEngineError):
    """Message content could not be read for token estimation."""


class TriggerReadError(MemoryEngineError):
    """The trigger could not read conversation token stats."""


class ProviderError(MemoryEngineError):
    """The LLM provider failed (network, timeout, or invalid response)."""


class SummarizationFailure(MemoryEngineError):
    """Summarizer call failed or returned output that does not fit the schema."""


class PersistenceFailure(MemoryEngineError):
    """A memory entry could not be committed. Nothing was written."""


class ChainConflictError(PersistenceFailure):
    """The entry does not continue the conversation's committed chain.

    Raised when another job already consumed the range, so retrying the
    same entry can never succeed.
    """
