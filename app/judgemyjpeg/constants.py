"""
Central constants for the JudgeMyJPEG application.
"""
from __future__ import annotations

# Subscription plans
PLAN_FREE = "free"
PLAN_PREMIUM = "premium"
PLAN_ANNUAL = "annual"
VALID_PLANS = (PLAN_FREE, PLAN_PREMIUM, PLAN_ANNUAL)
PREMIUM_PLANS = frozenset({PLAN_PREMIUM, PLAN_ANNUAL})

# Sentinel used for "unlimited" analysis quotas in API payloads
UNLIMITED_ANALYSES = 999999

# Analysis parameters
VALID_TONES = ("professional", "roast", "expert")
DEFAULT_TONE = "professional"
VALID_LANGUAGES = ("fr", "en", "es", "de", "it", "pt")
DEFAULT_LANGUAGE = "fr"

# Score thresholds
TOP_PHOTO_SCORE = 85
GOOD_PHOTO_SCORE = 70
AVERAGE_PHOTO_SCORE = 50
TOP_PHOTOS_COLLECTION_NAME = "🏆 Top Photos"

# Collections
DEFAULT_COLLECTION_COLOR = "#FF006E"

# Audit risk levels
RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"
RISK_CRITICAL = "critical"
RISK_LEVELS = (RISK_LOW, RISK_MEDIUM, RISK_HIGH, RISK_CRITICAL)

# Permission keys
PERM_ADMIN_VIEW = "admin.view"
PERM_ADMIN_USERS = "admin.users"
PERM_ADMIN_SECURITY = "admin.security"
PERM_ADMIN_FEEDBACK = "admin.feedback"
PERM_ADMIN_REPORTS = "admin.reports"

# Generic French error messages
MSG_SERVER_ERROR = "Erreur serveur"
MSG_UNAUTHENTICATED = "Non authentifié"
MSG_FORBIDDEN = "Accès refusé"
MSG_NOT_FOUND = "Ressource non trouvée"
MSG_METHOD_NOT_ALLOWED = "Méthode non autorisée"
MSG_TOO_LARGE = "Fichier trop volumineux"
MSG_RATE_LIMITED = "Trop de requêtes. Réessayez dans une minute."
