"""
Error taxonomy shared by the services and the Flask error handlers.
Every error carries the HTTP status and the user-facing message.
"""
from typing import Optional


class VotingAppError(Exception):
    status_code = 500
    default_message = "Erro interno do servidor"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **payload):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        body.update(self.payload)
        return body


class ValidationError(VotingAppError):
    status_code = 400
    default_message = "Dados inválidos"


class AuthError(VotingAppError):
    status_code = 401
    default_message = "Não autenticado"


class ForbiddenError(VotingAppError):
    status_code = 403
    default_message = "Acesso negado"


class StateError(VotingAppError):
    """Voting is switched off or outside its date window."""
    status_code = 403
    default_message = "A votação não está ativa no momento"


class NotFoundError(VotingAppError):
    status_code = 404
    default_message = "Registro não encontrado"


class ConflictError(VotingAppError):
    status_code = 409
    default_message = "Registro duplicado"


class RateLimitError(VotingAppError):
    status_code = 429
    default_message = "Muitas requisições. Aguarde um momento."


class InternalError(VotingAppError):
    status_code = 500


class StoreError(InternalError):
    """The data store was unreachable or rejected the operation."""
    default_message = "Erro ao acessar o banco de dados"


class DuplicateRecordError(StoreError):
    """A write violated a uniqueness constraint."""
    status_code = 409
    default_message = "Registro duplicado"
