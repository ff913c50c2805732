"""
auth/engine.py -- AuthenticationEngine: login, refresh, authorize, and role administration.

Composes the four leaf components:

  CredentialVerifier  login/password -> Principal
  TokenCodec          Principal -> signed tokens, tokens -> Principal/subject
  RefreshRegistry     one live refresh record per principal, atomic rotation
  role guards         can_act() / apply_transition() for privileged mutations

Session lineage:

  ANONYMOUS     --login-->                AUTHENTICATED (access + refresh issued)
  AUTHENTICATED --access expires-->       ANONYMOUS (must refresh)
  AUTHENTICATED --refresh ok-->           AUTHENTICATED (new pair, old refresh revoked)
  AUTHENTICATED --refresh failed-->       ANONYMOUS (must log in again)
  AUTHENTICATED --logout/password change--> ANONYMOUS (all refresh records revoked)

There is no ambient security context. The caller passes the acting Principal
explicitly to every privileged operation.

Every AuthError raised here is terminal for the request. Store failures
propagate unchanged.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.credentials import CredentialVerifier, hash_password
from auth.errors import AuthError, AuthErrorKind
from auth.models import LoginResult, Principal, User
from auth.refresh import RefreshRegistry
from auth.roles import Permission, Role, RoleOperation, apply_transition, can_act, has_authority, permissions_for
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import TokenCodec
from core.config import Settings

logger = logging.getLogger("gatekeeper.auth")


class AuthenticationEngine:
    def __init__(self, users: UserStore, codec: TokenCodec, registry: RefreshRegistry) -> None:
        self.users = users
        self.codec = codec
        self.registry = registry
        self.verifier = CredentialVerifier(users)

    def close(self) -> None:
        self.users.engine.dispose()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def login(self, login: str, password: str) -> LoginResult:
        principal = self.verifier.verify(login, password)
        result = self._open_session(principal)
        logger.info("Login succeeded for %r", principal.login)
        return result

    def register(self, login: str, password: str) -> LoginResult:
        """Create a USER account and open a session for it.

        The UNIQUE constraint on login is the authoritative duplicate check.
        """
        user = User(login=login, role=Role.USER, hashed_password=hash_password(password))
        try:
            self.users.create_user(user)
        except IntegrityError:
            raise AuthError(AuthErrorKind.LOGIN_TAKEN, login) from None
        logger.info("Registered new account %r", login)
        return self._open_session(Principal.from_user(user))

    def refresh(self, raw_refresh_token: str) -> LoginResult:
        """Exchange a refresh token for a new pair, consuming the old one.

        The account is re-read so a refresh never resurrects a deactivated
        user or carries a stale role into the new access token.
        """
        subject = self.codec.verify_refresh(raw_refresh_token)
        presented_hash = self.codec.hash_refresh_token(raw_refresh_token)
        user = self.users.find_active_by_login(subject)
        if user is None:
            self.registry.revoke_all(subject)
            raise AuthError(AuthErrorKind.REFRESH_REVOKED, "account inactive")
        principal = Principal.from_user(user)
        tokens = self.codec.issue_pair(principal)
        self.registry.rotate(
            presented_hash,
            subject,
            self.codec.hash_refresh_token(tokens.refresh_token),
            tokens.refresh_expires_at,
        )
        return LoginResult(principal, tokens, self.access_expires_in)

    def logout(self, login: str) -> int:
        return self.registry.revoke_all(login)

    def change_password(self, login: str, old_password: str, new_password: str) -> None:
        """Verify the old password, store the new hash, end every session."""
        self.verifier.verify(login, old_password)
        self.users.update_password(login, hash_password(new_password))
        self.registry.revoke_all(login)
        logger.info("Password changed for %r; refresh records revoked", login)

    def _open_session(self, principal: Principal) -> LoginResult:
        tokens = self.codec.issue_pair(principal)
        self.registry.store(
            self.codec.hash_refresh_token(tokens.refresh_token),
            principal.login,
            tokens.refresh_expires_at,
        )
        return LoginResult(principal, tokens, self.access_expires_in)

    @property
    def access_expires_in(self) -> int:
        return int(self.codec.access_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Per-request authorization
    # ------------------------------------------------------------------

    def authorize(self, raw_access_token: str, strong: bool = False) -> Principal:
        """Verify an access token and return the Principal it grants.

        strong=False trusts the signed claims (cheap, read paths).
        strong=True re-reads the account and overwrites role and permissions
        with current values, closing the window in which a demoted or
        deactivated account still holds a valid token. Required for every
        state-mutating request.
        """
        principal = self.codec.verify_access(raw_access_token)
        if not strong:
            return principal
        user = self.users.find_active_by_login(principal.login)
        if user is None:
            logger.warning("Strong validation failed: %r no longer active", principal.login)
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "account inactive")
        fresh = Principal.from_user(user)
        if fresh.role is not principal.role:
            logger.info("Role for %r changed since issue: %s -> %s", user.login, principal.role.value, fresh.role.value)
        return fresh

    def revalidate(self, principal: Principal) -> tuple[Principal, str]:
        """Re-read the account and issue a fresh access token reflecting its current role."""
        user = self.users.find_active_by_login(principal.login)
        if user is None:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "account inactive")
        fresh = Principal.from_user(user)
        return fresh, self.codec.issue_access(fresh)

    # ------------------------------------------------------------------
    # Role administration
    # ------------------------------------------------------------------

    def change_role(self, actor: Principal, target_login: str, operation: RoleOperation) -> Principal:
        """Apply a named role operation to another account.

        Guards run in order: the operation's own rank floor and the
        user:update authority, no self-targeting, target exists, then the
        actor-vs-target rank check and the transition rules.
        """
        if actor.role < operation.minimum_actor or not has_authority(actor.role, Permission.USER_UPDATE.value):
            logger.warning("%r (%s) may not run %s", actor.login, actor.role.value, operation.value)
            floor = operation.minimum_actor.value
            raise AuthError(AuthErrorKind.INSUFFICIENT_RANK, f"{operation.value} requires {floor}")
        if target_login == actor.login:
            raise AuthError(AuthErrorKind.INSUFFICIENT_RANK, "self role change")
        target = self._load_target(target_login)
        self._require_rank(actor, target)
        new_role = apply_transition(target.role, operation)
        self.users.update_role(target.login, new_role)
        logger.info(
            "%r applied %s to %r (%s -> %s)",
            actor.login,
            operation.value,
            target.login,
            target.role.value,
            new_role.value,
        )
        return Principal(login=target.login, role=new_role, permissions=permissions_for(new_role))

    def deactivate(self, actor: Principal, target_login: str) -> Principal:
        """Soft-delete an account and end all of its sessions."""
        if not has_authority(actor.role, Permission.USER_DELETE.value):
            logger.warning("%r (%s) lacks user:delete", actor.login, actor.role.value)
            raise AuthError(AuthErrorKind.INSUFFICIENT_RANK, "requires user:delete")
        target = self._load_target(target_login)
        if target.login == actor.login:
            raise AuthError(AuthErrorKind.INSUFFICIENT_RANK, "self-deactivation")
        self._require_rank(actor, target)
        self.users.set_active(target.login, False)
        self.registry.revoke_all(target.login)
        logger.info("%r deactivated %r", actor.login, target.login)
        return Principal.from_user(target)

    def _load_target(self, login: str) -> User:
        target = self.users.find_active_by_login(login)
        if target is None:
            raise AuthError(AuthErrorKind.USER_NOT_FOUND, login)
        return target

    @staticmethod
    def _require_rank(actor: Principal, target: User) -> None:
        if not can_act(actor.role, target.role):
            logger.warning(
                "Rank check failed: %r (%s) on %r (%s)",
                actor.login,
                actor.role.value,
                target.login,
                target.role.value,
            )
            raise AuthError(AuthErrorKind.INSUFFICIENT_RANK)


def build_auth_engine(settings: Settings, db_url: str | None = None) -> AuthenticationEngine:
    """Wire stores, codec and registry from settings. Used by the API lifespan and the CLI."""
    db = make_engine(db_url or settings.database_url)
    codec = TokenCodec.from_settings(settings)
    return AuthenticationEngine(UserStore(db), codec, RefreshRegistry(RefreshTokenStore(db)))
