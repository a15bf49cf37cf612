"""
Credential store — one OAuth credential row per (user, service).

Pure storage: upsert / delete / lookup.  Only the token manager writes
through it; nothing else reads tokens from the database.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import decrypt_token, encrypt_token
from database.models import UserService, as_utc
from utils.schemas import Credential, Provider

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        if session_factory is None:
            from database.session import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    async def get(self, user_id: str, provider: Provider) -> Optional[Credential]:
        async with self._session_factory() as session:
            row = await self._find(session, user_id, provider)
            if row is None:
                return None
            return Credential(
                user_id=row.user_id,
                provider=Provider(row.service),
                access_token=decrypt_token(row.access_token),
                refresh_token=decrypt_token(row.refresh_token),
                expires_at=as_utc(row.token_expires_at),
            )

    async def upsert(self, credential: Credential) -> None:
        """Insert or replace the credential for ``credential.key``."""
        try:
            await self._write(credential)
        except IntegrityError:
            # lost an insert race on (user_id, service); the row exists now
            await self._write(credential)
        logger.debug("Stored %s credential for user %s", credential.provider.value, credential.user_id)

    async def _write(self, credential: Credential) -> None:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            try:
                row = await self._find(session, credential.user_id, credential.provider)
                if row is None:
                    row = UserService(
                        user_id=credential.user_id,
                        service=credential.provider.value,
                        created_at=now,
                    )
                    session.add(row)
                row.access_token = encrypt_token(credential.access_token)
                row.refresh_token = encrypt_token(credential.refresh_token)
                row.token_expires_at = credential.expires_at
                row.updated_at = now
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def delete(self, user_id: str, provider: Provider) -> bool:
        """Delete the credential. Returns True if a row was removed."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(UserService).where(
                    UserService.user_id == user_id,
                    UserService.service == provider.value,
                )
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def list_providers(self, user_id: str) -> List[Provider]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserService.service)
                .where(UserService.user_id == user_id)
                .order_by(UserService.service)
            )
            return [Provider(s) for s in result.scalars().all()]

    @staticmethod
    async def _find(session: AsyncSession, user_id: str, provider: Provider) -> Optional[UserService]:
        result = await session.execute(
            select(UserService).where(
                UserService.user_id == user_id,
                UserService.service == provider.value,
            )
        )
        return result.scalar_one_or_none()
