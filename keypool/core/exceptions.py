class AppError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class PoolExhaustedError(AppError):
    """No eligible credential: every key is inactive, over quota, or open."""

    def __init__(self, service_name: str, message: str | None = None):
        super().__init__(
            message or f"No eligible credential available for service: {service_name}",
            status_code=503,
        )
        self.service_name = service_name


class UnknownServiceError(AppError):
    def __init__(self, service_name: str):
        super().__init__(f"No credentials registered for service: {service_name}", status_code=404)
        self.service_name = service_name


class InvalidHandleError(AppError):
    """A report referenced a handle that is not a live acquisition."""

    def __init__(self, message: str = "Credential handle is not a live acquisition"):
        super().__init__(message, status_code=409)


class SecretDecryptionError(AppError):
    def __init__(self, credential_id: str):
        super().__init__(f"Failed to decrypt secret for credential {credential_id}", status_code=500)
        self.credential_id = credential_id


class NotFoundError(AppError):
    def __init__(self, entity: str, id: str):
        super().__init__(f"{entity} not found: {id}", status_code=404)
