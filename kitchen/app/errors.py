class KitchenError(Exception):
    """Base class for kitchen failures."""


class RemoteUnavailable(KitchenError):
    """The status source could not be reached or sent malformed data."""


class UploadFailed(KitchenError):
    """A job could not be created on the status source."""


class DeleteFailed(KitchenError):
    """A job could not be deleted on the status source."""


class UnknownJob(KitchenError, KeyError):
    """No job with the given id is tracked."""
