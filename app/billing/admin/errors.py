class AdminError(Exception):
    pass


class AdminForbiddenError(AdminError):
    pass


class AdminTargetNotFoundError(AdminError):
    pass


class AdminInvalidPlanError(AdminError):
    pass


class AdminPromoCodeExistsError(AdminError):
    pass


class AdminPromoCodeInvalidError(AdminError):
    pass


class AdminCouponInvalidError(AdminError):
    pass


class AdminRefundNotAllowedError(AdminError):
    pass
