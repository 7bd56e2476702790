from telemetry_server.common.exceptions import InternalException


class RepositoryObjectNotFound(InternalException):
    """
    Wraps sqlalchemy exception when an object does not exist
    """

    ...


class MultipleRepositoryObjectsFound(InternalException):
    """
    Raised when more than one row matches a lookup that expects exactly one
    """

    ...


class PreventingModelTruncation(InternalException):
    """
    Raised instead of running a delete with no filter
    """

    ...
