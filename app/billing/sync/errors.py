class BillingSyncError(Exception):
    pass


class BillingSyncForbiddenError(BillingSyncError):
    pass
