class CheckoutError(Exception):
    pass


class CheckoutInvalidModeError(CheckoutError):
    pass


class CheckoutInvalidPriceError(CheckoutError):
    pass
