"""
Custom exceptions for MDB_FACADE.

All errors derive from MongoFacadeError, which keeps backward compatibility
with RuntimeError while carrying an optional context dictionary.
"""

from typing import Any, Dict, Optional


class MongoFacadeError(RuntimeError):
    """
    Base exception for database façade errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (collection,
                 operation, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class InvalidConfiguration(MongoFacadeError):
    """
    Raised when the connection configuration is invalid or missing.

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class UnsupportedClient(InvalidConfiguration):
    """Raised when the configured `client` does not name the MongoDB driver."""

    def __init__(self, client: Any) -> None:
        super().__init__(
            f"Unsupported database client: {client!r}",
            config_key="client",
            config_value=client,
        )
        self.client = client


class InitializationError(MongoFacadeError):
    """
    Raised when establishing the MongoDB connection fails.

    Attributes:
        message: Error message
        mongo_uri: MongoDB connection URI (if available)
        db_name: Database name (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        mongo_uri: Optional[str] = None,
        db_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if mongo_uri:
            context["mongo_uri"] = mongo_uri
        if db_name:
            context["db_name"] = db_name
        super().__init__(message, context=context)
        self.mongo_uri = mongo_uri
        self.db_name = db_name


class ConnectionClosed(MongoFacadeError):
    """Raised when an operation is attempted on a closed connection handle."""


class UnsupportedOperation(MongoFacadeError, AttributeError):
    """
    Raised when a pass-through member is not a callable query builder method.

    Also an AttributeError so that ``hasattr()`` and ``getattr(obj, name,
    default)`` behave as expected on the façade.
    """

    def __init__(self, name: str) -> None:
        super().__init__(f"Database.{name} is not a function", context={"operation": name})
        self.name = name


class InvalidArgument(MongoFacadeError):
    """Raised when an operation receives a missing or malformed argument."""


class NoActiveTransaction(MongoFacadeError):
    """Raised when committing or rolling back a global transaction that was never begun."""


class TransactionStartFailed(MongoFacadeError):
    """Raised when the driver refuses to start a session or transaction."""


class TransactionNotActive(MongoFacadeError):
    """Raised when a committed or rolled-back transaction is used again."""


class SchemaAlreadyBuilt(MongoFacadeError):
    """Raised when a SchemaBuilder is built more than once."""
