"""Exceptions raised by the intake core."""


class IntakeError(Exception):
    """Base class for intake errors."""


class UserNotFoundError(IntakeError):
    """The user is not known to the registry."""

    def __init__(self, email: str):
        super().__init__(f"User not found: {email}")
        self.email = email


class ConversationNotFoundError(IntakeError):
    """A conversation document is absent."""

    def __init__(self, email: str, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.email = email
        self.conversation_id = conversation_id


class ConflictError(IntakeError):
    """
    A lifecycle rule refused the operation.

    ``code`` is one of the reason codes below and is surfaced to API callers.
    """

    ONBOARDING_EXISTS = "onboarding_exists"
    ONBOARDING_COMPLETE = "onboarding_complete"
    ONBOARDING_INCOMPLETE = "onboarding_incomplete"
    ONBOARDING_ALREADY_COMPLETE = "onboarding_already_complete"
    ONBOARDING_NOT_DELETABLE = "onboarding_not_deletable"
    NOT_A_TASK = "not_a_task"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ExternalCallError(IntakeError):
    """The model-calling collaborator failed."""


class StorageError(IntakeError):
    """A stored document could not be decoded."""


class EmptyMessageError(IntakeError, ValueError):
    """A message had no text."""
