"""Account context: long-term documents, service credentials, strategic decisions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from agent_workforce.storage.common import (
    load_json_object,
    to_db_datetime,
    to_utc_aware_or_none,
    utc_now,
)
from agent_workforce.storage.sqlmodel_models import (
    Account,
    AccountDocument,
    ServiceConnection,
    StrategicDecision,
)


@dataclass(slots=True)
class AccountContext:
    """What an account has told us about itself and which services it connected."""

    account_id: int
    long_term_documents: dict[str, str] = field(default_factory=dict)
    connected_services: tuple[str, ...] = ()

    @property
    def onboarded(self) -> bool:
        return bool(self.long_term_documents)


class AccountContextStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_account(self, name: str) -> int:
        with Session(self.engine) as session:
            row = Account(name=name.strip() or "account", created_at=to_db_datetime(utc_now()))
            session.add(row)
            session.commit()
            session.refresh(row)
            assert row.id is not None
            return row.id

    def list_account_ids(self) -> list[int]:
        with Session(self.engine) as session:
            return [
                int(account_id)
                for account_id in session.exec(select(Account.id).order_by(col(Account.id))).all()
                if account_id is not None
            ]

    def put_document(self, *, account_id: int, name: str, content: str) -> None:
        """Insert or replace one long-term document."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(
                select(AccountDocument).where(
                    AccountDocument.account_id == account_id,
                    AccountDocument.name == name,
                ),
            ).one_or_none()
            if row is None:
                row = AccountDocument(
                    account_id=account_id,
                    name=name,
                    content=content,
                    updated_at=now,
                )
            else:
                row.content = content
                row.updated_at = now
            session.add(row)
            session.commit()

    def connect_service(
        self,
        *,
        account_id: int,
        service: str,
        credentials: dict[str, Any],
    ) -> None:
        """Insert or replace the credentials for one service."""

        now = to_db_datetime(utc_now())
        payload = json.dumps(credentials, ensure_ascii=False, sort_keys=True)
        with Session(self.engine) as session:
            row = session.exec(
                select(ServiceConnection).where(
                    ServiceConnection.account_id == account_id,
                    ServiceConnection.service == service,
                ),
            ).one_or_none()
            if row is None:
                row = ServiceConnection(
                    account_id=account_id,
                    service=service,
                    credentials_json=payload,
                    created_at=now,
                    updated_at=now,
                )
            else:
                row.credentials_json = payload
                row.updated_at = now
            session.add(row)
            session.commit()

    def get_credentials(self, account_id: int, service: str) -> dict[str, Any] | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ServiceConnection).where(
                    ServiceConnection.account_id == account_id,
                    ServiceConnection.service == service,
                ),
            ).one_or_none()
            if row is None:
                return None
            return load_json_object(row.credentials_json)

    def get_context(self, account_id: int) -> AccountContext:
        with Session(self.engine) as session:
            documents = session.exec(
                select(AccountDocument)
                .where(AccountDocument.account_id == account_id)
                .order_by(col(AccountDocument.name).asc()),
            ).all()
            services = session.exec(
                select(ServiceConnection.service)
                .where(ServiceConnection.account_id == account_id)
                .order_by(col(ServiceConnection.service).asc()),
            ).all()
        return AccountContext(
            account_id=account_id,
            long_term_documents={row.name: row.content for row in documents},
            connected_services=tuple(services),
        )

    def list_onboarded_accounts(self) -> list[int]:
        """Accounts with at least one long-term document."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(AccountDocument.account_id)
                .group_by(col(AccountDocument.account_id))
                .having(func.count(col(AccountDocument.id)) > 0)
                .order_by(col(AccountDocument.account_id).asc()),
            ).all()
            return [int(account_id) for account_id in rows]

    def last_strategic_decision_at(self, account_id: int) -> datetime | None:
        with Session(self.engine) as session:
            value = session.exec(
                select(func.max(StrategicDecision.created_at)).where(
                    StrategicDecision.account_id == account_id,
                ),
            ).one()
            return to_utc_aware_or_none(value)

    def record_strategic_decision(
        self,
        *,
        account_id: int,
        execution_id: int | None,
        summary: str | None,
        created_at: datetime | None = None,
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                StrategicDecision(
                    account_id=account_id,
                    execution_id=execution_id,
                    summary=summary,
                    created_at=to_db_datetime(created_at or utc_now()),
                ),
            )
            session.commit()
