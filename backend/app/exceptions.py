"""
Exceptions métier du flux de présences.

Les trois premières sont traduites en réponse JSON {"error": ...} par les handlers
enregistrés dans app.main ; TransientDeliveryError ne quitte jamais une session SSE.
"""


class AttendanceError(Exception):
    """Base des erreurs applicatives."""
    status_code = 500

    def __init__(self, message: str = "Une erreur interne est survenue."):
        super().__init__(message)
        self.message = message


class AuthenticationError(AttendanceError):
    """Jeton absent, invalide, expiré ou sans claim de streaming."""
    status_code = 401


class AuthorizationError(AttendanceError):
    """Rôle ou périmètre (école / classe) non autorisé."""
    status_code = 403


class ResourceNotFoundError(AttendanceError):
    """Ressource absente ou hors de l'école demandée."""
    status_code = 404


class AggregationFailure(AttendanceError):
    """Échec d'une requête d'agrégation lors du calcul d'un snapshot ou d'un tableau de bord."""
    status_code = 500


class TransientDeliveryError(AttendanceError):
    """Écriture impossible vers une connexion fermée ou saturée."""
