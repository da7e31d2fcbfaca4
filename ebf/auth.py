"""
Authentication – identity provider boundary, profile bootstrap and
user-facing error messages.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import jwt

from ebf.config import JWT_AUDIENCE, JWT_SECRET_KEY
from ebf.errors import AuthError, EbfError, RemoteRejection, ValidationFailure
from ebf.models import Profile, Role, Site, Technician

logger = logging.getLogger(__name__)

SIGNED_OUT = "SIGNED_OUT"
CONFIRMATION_REQUIRED = (
    "Inscription réussie ! Vérifiez vos emails pour valider le compte avant de vous connecter."
)
RESET_LINK_SENT = "Lien envoyé ! Vérifiez vos emails."

# Substrings of provider messages -> what the user is told.
_AUTH_MESSAGES: List[Tuple[Tuple[str, ...], str]] = [
    (("Invalid login credentials", "invalid_grant"), "Email ou mot de passe incorrect."),
    (("Email not confirmed",),
     "Votre email n'est pas encore confirmé. Vérifiez votre boîte mail (et les spams)."),
    (("User already registered",), "Un compte existe déjà avec cet email/téléphone. Connectez-vous."),
    (("Password should be at least",), "Le mot de passe doit contenir au moins 6 caractères."),
    (("Phone signups are disabled",), "L'inscription par téléphone est désactivée. Utilisez l'email."),
    (("Failed to fetch", "Network request failed"), "Problème de connexion internet. Vérifiez votre réseau."),
    (("Too many requests", "rate_limit"), "Trop de tentatives. Veuillez patienter quelques minutes."),
]
FALLBACK_AUTH_MESSAGE = "Une erreur technique est survenue."


@dataclass
class User:
    id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    access_token: str
    user: User


@dataclass
class SignUpResult:
    user: Optional[User] = None
    session: Optional[Session] = None   # None: email confirmation required


class IdentityProvider(Protocol):
    """Boundary of the managed authentication service."""

    async def sign_up(self, password: str, email: Optional[str] = None, phone: Optional[str] = None,
                      metadata: Optional[Dict[str, Any]] = None) -> SignUpResult: ...

    async def sign_in(self, password: str, email: Optional[str] = None,
                      phone: Optional[str] = None) -> Session: ...

    async def sign_out(self) -> None: ...

    async def reset_password(self, email: str) -> None: ...

    async def get_session(self) -> Optional[Session]: ...

    async def get_user(self) -> Optional[User]: ...

    def on_session_change(self, callback: Callable[[str, Optional[Session]], Any]) -> Callable[[], None]: ...


def friendly_auth_error(message: str) -> str:
    """Map a raw provider message to the text shown to the user."""
    message = message or ""
    for needles, friendly in _AUTH_MESSAGES:
        if any(n in message for n in needles):
            return friendly
    return FALLBACK_AUTH_MESSAGE


def decode_session_claims(token: str, secret: str = JWT_SECRET_KEY) -> Dict[str, Any]:
    """Verify a session access token and return its claims."""
    try:
        return jwt.decode(token, secret, algorithms=["HS256"], audience=JWT_AUDIENCE)
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expirée. Reconnectez-vous.") from None
    except jwt.InvalidTokenError:
        raise AuthError("Session invalide. Reconnectez-vous.") from None


def specialty_for(role: str) -> str:
    return "Administration" if role == Role.ADMIN else role


class AuthService:
    """Sign-in / sign-up flows on top of an IdentityProvider and the remote store."""

    def __init__(self, provider: Optional[IdentityProvider], remote, state,
                 jwt_secret: str = JWT_SECRET_KEY):
        self.provider = provider
        self.remote = remote
        self.state = state
        self.jwt_secret = jwt_secret
        self.on_signed_out: List[Callable[[], Any]] = []
        self._unwatch: Optional[Callable[[], None]] = None

    # ── Provider calls ───────────────────────────────────────────────

    async def _provider_call(self, coro):
        try:
            return await coro
        except EbfError:
            raise
        except Exception as e:
            logger.warning("Auth provider error: %s", e)
            raise AuthError(friendly_auth_error(str(e))) from e

    @staticmethod
    def _credentials(identifier: str, method: str) -> Dict[str, str]:
        identifier = (identifier or "").strip()
        if method not in ("email", "phone"):
            raise ValidationFailure(f"Méthode d'authentification inconnue : {method!r}.", "method")
        if not identifier:
            raise ValidationFailure("Identifiant requis.", method)
        return {method: identifier}

    async def sign_in(self, identifier: str, password: str, method: str = "email") -> Profile:
        creds = self._credentials(identifier, method)
        session = await self._provider_call(self.provider.sign_in(password=password.strip(), **creds))
        return await self._open_session(session)

    async def sign_up(self, identifier: str, password: str, full_name: str,
                      role: str = Role.VISITOR.value, site: str = Site.ABIDJAN.value,
                      method: str = "email") -> Optional[Profile]:
        """
        Register a user. Returns the signed-in profile when the provider opens
        a session right away, None when the email must be confirmed first.
        """
        creds = self._credentials(identifier, method)
        role, site, full_name = Role(role).value, Site(site).value, full_name.strip()
        metadata = {"full_name": full_name, "role": role, "site": site}
        result = await self._provider_call(
            self.provider.sign_up(password=password.strip(), metadata=metadata, **creds)
        )
        if result.session is None:
            logger.info("Sign-up pending email confirmation")
            return None

        user_id = result.user.id if result.user else result.session.user.id
        await self._upsert(Profile.TABLE, {
            "id": user_id,
            "email": creds.get("email", ""),
            "phone": creds.get("phone", ""),
            "full_name": full_name,
            "role": role,
            "site": site,
        })
        if role != Role.VISITOR:
            await self._upsert(Technician.TABLE, {
                "id": user_id,
                "name": full_name,
                "specialty": specialty_for(role),
                "site": site,
                "status": "Available",
            })
        return await self._open_session(result.session)

    async def request_password_reset(self, identifier: str, method: str = "email") -> str:
        if method != "email":
            raise ValidationFailure("La réinitialisation n'est disponible que par Email.", "method")
        creds = self._credentials(identifier, method)
        await self._provider_call(self.provider.reset_password(creds["email"]))
        return RESET_LINK_SENT

    async def sign_out(self) -> None:
        await self._provider_call(self.provider.sign_out())
        # providers without session-change push still get torn down
        if self.state.session is not None:
            self._on_session_change(SIGNED_OUT, None)

    async def restore_session(self) -> Optional[Profile]:
        """Resume an existing provider session at startup, if any."""
        session = await self._provider_call(self.provider.get_session())
        if session is None:
            return None
        return await self._open_session(session)

    # ── Session change ───────────────────────────────────────────────

    def watch(self) -> None:
        if self._unwatch is None and self.provider is not None:
            self._unwatch = self.provider.on_session_change(self._on_session_change)

    def unwatch(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None

    def _on_session_change(self, event: str, session: Optional[Session]) -> None:
        if event != SIGNED_OUT:
            return
        logger.info("Signed out, tearing down session")
        for callback in list(self.on_signed_out):
            try:
                callback()
            except Exception:
                logger.exception("Sign-out callback failed")
        self.state.reset()

    # ── Profile bootstrap ────────────────────────────────────────────

    async def _open_session(self, session: Session) -> Profile:
        profile = await self.load_profile(session)
        if profile is None:
            logger.warning("No profile for user %s, continuing as visitor", session.user.id)
            profile = Profile(id=session.user.id, email=session.user.email)
        self.state.sign_in(session, profile)
        return profile

    async def _user_details(self, session: Session) -> Tuple[Dict[str, Any], Optional[str]]:
        if self.jwt_secret:
            claims = decode_session_claims(session.access_token, self.jwt_secret)
            return claims.get("user_metadata") or {}, claims.get("email")
        user = await self._provider_call(self.provider.get_user()) or session.user
        return user.metadata or {}, user.email

    async def load_profile(self, session: Session) -> Optional[Profile]:
        """
        Profile of the session's user. Missing profiles are created from the
        sign-up metadata; non-visitors are ensured a row in the team table.
        """
        user_id = session.user.id
        row = await self.remote.get(Profile.TABLE, {"id": user_id})
        if row is None:
            meta, email = await self._user_details(session)
            new_row = {
                "id": user_id,
                "full_name": meta.get("full_name") or "Utilisateur",
                "role": meta.get("role") or Role.VISITOR.value,
                "site": meta.get("site") or Site.GLOBAL.value,
                "email": email,
            }
            try:
                row = await self.remote.insert(Profile.TABLE, new_row)
            except RemoteRejection as e:
                logger.warning("Could not create profile for %s: %s", user_id, e)
                return None

        profile = Profile.from_row(row)
        await self.ensure_technician(profile)
        return profile

    async def ensure_technician(self, profile: Profile) -> None:
        if profile.role == Role.VISITOR:
            return
        if await self.remote.get(Technician.TABLE, {"id": profile.id}) is not None:
            return
        await self.remote.insert(Technician.TABLE, {
            "id": profile.id,
            "name": profile.full_name,
            "specialty": specialty_for(profile.role),
            "site": profile.site,
            "status": "Available",
        })
        logger.info("Added %s to the team table", profile.full_name)

    async def update_profile(self, full_name: str, phone: Optional[str] = None) -> Profile:
        """
        Edit the signed-in user's name and phone; the team row follows the
        new name. The email is read-only.
        """
        current = self.state.profile
        if self.state.session is None or current is None:
            raise AuthError("Aucune session active.")
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationFailure("Le champ « Nom Complet » est obligatoire.", "full_name")
        phone = (phone or "").strip() or None

        key = {"id": current.id}
        row = await self.remote.update(Profile.TABLE, key, {"full_name": full_name, "phone": phone})
        profile = Profile.from_row(row)
        if profile.role != Role.VISITOR:
            if await self.remote.get(Technician.TABLE, key) is None:
                await self.ensure_technician(profile)
            else:
                await self.remote.update(Technician.TABLE, key, {"name": full_name})
        self.state.update_profile(profile)
        logger.info("Profile %s updated", profile.id)
        return profile

    async def _upsert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        key = {"id": row["id"]}
        if await self.remote.get(table, key) is None:
            return await self.remote.insert(table, row)
        return await self.remote.update(table, key, {k: v for k, v in row.items() if k != "id"})
