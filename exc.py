class ApplicationError(Exception):
    pass


class RequestBodyError(ApplicationError):
    pass


class ObjectParseError(ApplicationError):
    pass


class MissingRequestError(ValueError):
    pass
