class CashDrawerError(Exception):
    pass


class InsufficientPaymentError(CashDrawerError):
    pass


class InsufficientFundsError(CashDrawerError):
    pass


class InsufficientChangeError(InsufficientFundsError):
    pass


class NotFoundError(CashDrawerError):
    pass


class EntryNotFoundError(NotFoundError):
    pass


class InstanceNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class AlreadyRevertedError(CashDrawerError):
    pass


class NotRevertibleError(CashDrawerError):
    pass


class StorageError(Exception):
    """The backing store failed; nothing from the interrupted operation was kept."""
