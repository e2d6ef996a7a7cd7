class AppException(Exception):
    """Base application exception."""

    pass


class BrokerError(AppException):
    """Message broker error."""

    pass


class ConnectError(BrokerError):
    """Broker transport, auth or TLS failure while connecting."""

    pass


class FatalDisconnect(BrokerError):
    """Broker closed the connection for an unrecoverable reason."""

    pass


class BrokerOperationError(BrokerError):
    """A channel operation (get, ack, nack) failed."""

    pass


class QueueDeclareError(BrokerError):
    """Queue could not be asserted on the broker."""

    pass


class ConfigError(AppException):
    """Configuration store error."""

    pass


class ConfigFetchError(ConfigError):
    """Raw configuration could not be fetched."""

    pass


class ConfigParseError(ConfigError):
    """Raw configuration could not be parsed into job specs."""

    pass


class OrchestrationError(AppException):
    """Orchestration layer error."""

    pass


class OrchestrationQueryError(OrchestrationError):
    """Active job count could not be fetched."""

    pass


class OrchestrationDispatchError(OrchestrationError):
    """Job or secret creation failed."""

    pass
