class OrchestratorError(Exception):
    """Base class for errors raised while turning an event into jobs."""


class ConfigurationError(OrchestratorError):
    pass


class AmbiguousTargetError(OrchestratorError):
    pass


class UnsupportedEventError(OrchestratorError):
    type_name: str

    def __init__(self, type_name: str):
        self.type_name = type_name
        super().__init__(f"unsupported event type: {type_name}")


class ParseError(OrchestratorError):
    pass


class CollaboratorError(OrchestratorError):
    """Failure reported by the hosting service API."""
