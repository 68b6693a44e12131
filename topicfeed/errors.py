"""Exception hierarchy for the topicfeed core."""


class TopicfeedError(Exception):
    """Base class for all topicfeed errors."""


class InputError(TopicfeedError):
    """A raw article is malformed or misses a required field."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class StorageError(TopicfeedError):
    """The content store could not complete an operation."""


class InvalidTransitionError(TopicfeedError):
    """A link status change that the state machine does not allow."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move link from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class UnknownTenantError(TopicfeedError):
    """The tenant id is not present in the tenant configuration."""


class UnknownSourceError(TopicfeedError):
    """The source id is not present in the content store."""


class HealthActionError(TopicfeedError):
    """An automatic health action could not be written."""
