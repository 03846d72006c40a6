class PromoError(Exception):
    code = "E_PROMO"
    reason = "Promo code cannot be redeemed."


class PromoCodeInvalidError(PromoError):
    code = "E_PROMO_INVALID"
    reason = "Please enter a promo code."


class PromoCodeNotFoundError(PromoError):
    code = "E_PROMO_NOT_FOUND"
    reason = "This promo code does not exist."


class PromoCodeInactiveError(PromoError):
    code = "E_PROMO_INACTIVE"
    reason = "This promo code is no longer active."


class PromoCodeExpiredError(PromoError):
    code = "E_PROMO_EXPIRED"
    reason = "This promo code has expired."


class PromoCodeDepletedError(PromoError):
    code = "E_PROMO_DEPLETED"
    reason = "This promo code has reached its usage limit."


class PromoCodeAlreadyRedeemedError(PromoError):
    code = "E_PROMO_ALREADY_REDEEMED"
    reason = "You have already redeemed this promo code."
