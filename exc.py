class ApplicationError(Exception):
    pass


class ProviderError(ApplicationError):
    pass


class ConfigError(ApplicationError):
    pass


class PatchError(ApplicationError):
    pass


class CertificateError(ApplicationError):
    pass


class RegistrationError(ApplicationError):
    pass
