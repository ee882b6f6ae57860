"""Tests for docmail.orchestrator."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tests.conftest import (
    FakeConnector,
    FakeMailboxSession,
    InMemoryAccountStore,
    InMemoryRepository,
    _build_multipart_email,
    _build_plain_email,
    make_account,
    make_fetched,
    make_mail,
)

from docmail.attachments import AttachmentImporter
from docmail.exceptions import ParseFailure, PersistenceFailure
from docmail.models import (
    MailAccount,
    MailFilter,
    MailFilterRule,
    MailImportError,
    MailProtocol,
    ParsedAttachment,
    ParsedMessage,
)
from docmail.orchestrator import ImportOrchestrator
from docmail.parser import MessageParser
from docmail.paths import PathResolver

INBOX_DAY = "/mail/bob/Inbox/2024/3/5"


def _orchestrator(
    session: FakeMailboxSession,
    repository: InMemoryRepository,
    store: InMemoryAccountStore,
    mime_types,
    **kwargs,
) -> ImportOrchestrator:
    return ImportOrchestrator(
        FakeConnector(session),
        repository,
        store,
        PathResolver(repository),
        AttachmentImporter(repository, mime_types),
        **kwargs,
    )


@pytest.fixture
def account() -> MailAccount:
    return make_account()


@pytest.fixture
def store(account: MailAccount) -> InMemoryAccountStore:
    return InMemoryAccountStore(account)


class TestImportCompatibilityMode:
    @pytest.mark.asyncio
    async def test_imports_into_grouped_inbox(self, account, store, repository, mime_types):
        session = FakeMailboxSession([make_fetched("1", _build_plain_email())])
        orchestrator = _orchestrator(session, repository, store, mime_types)

        assert await orchestrator.import_messages(account) is None

        mail = repository.mails[f"{INBOX_DAY}/1-Test Subject"]
        assert mail.subject == "Test Subject"
        assert mail.uuid is not None
        assert {"/mail", "/mail/bob", "/mail/bob/Inbox"} <= set(repository.folders)
        assert store.accounts[1].last_uid == 1
        assert session.seen_calls == [("1", True)]
        assert session.closed_with is False

    @pytest.mark.asyncio
    async def test_node_name_is_escaped(self, account, store, repository, mime_types):
        raw = _build_plain_email(subject="Re: [ext] a/b")
        session = FakeMailboxSession([make_fetched("7", raw)])
        await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert f"{INBOX_DAY}/7-Re ext ab" in repository.mails

    @pytest.mark.asyncio
    async def test_attachments_stored_under_mail(self, account, store, repository, mime_types):
        raw = _build_multipart_email(
            subject="Report",
            attachments=[("report.pdf", "application/pdf", b"%PDF")],
        )
        session = FakeMailboxSession([make_fetched("1", raw)])
        await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert list(repository.documents) == [f"{INBOX_DAY}/1-Report/report.pdf"]
        assert repository.documents[f"{INBOX_DAY}/1-Report/report.pdf"]["owner"] == "bob"


class TestImportCursor:
    @pytest.mark.asyncio
    async def test_second_run_imports_nothing(self, account, store, repository, mime_types):
        session = FakeMailboxSession(
            [make_fetched("1", _build_plain_email()), make_fetched("2", _build_plain_email(subject="Two"))]
        )
        orchestrator = _orchestrator(session, repository, store, mime_types)
        await orchestrator.import_messages(account)
        assert len(repository.mails) == 2
        updates = len(store.updates)

        await orchestrator.import_messages(store.accounts[1])
        assert len(repository.mails) == 2
        assert len(store.updates) == updates
        assert store.accounts[1].last_uid == 2

    @pytest.mark.asyncio
    async def test_rerun_from_zero_skips_existing_mail(self, account, store, repository, mime_types):
        session = FakeMailboxSession([make_fetched("1", _build_plain_email())])
        orchestrator = _orchestrator(session, repository, store, mime_types)
        await orchestrator.import_messages(account)
        stored = repository.mails[f"{INBOX_DAY}/1-Test Subject"]

        assert await orchestrator.import_messages(account) is None
        assert repository.mails[f"{INBOX_DAY}/1-Test Subject"] is stored

    @pytest.mark.asyncio
    async def test_cursor_never_decreases(self, store, repository, mime_types):
        account = make_account(last_uid=10)
        store.accounts[1] = account
        session = FakeMailboxSession([make_fetched("12", _build_plain_email())])
        await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert [a.last_uid for a in store.updates] == [12]

    @pytest.mark.asyncio
    async def test_pop3_keeps_no_cursor(self, repository, mime_types):
        account = make_account(protocol=MailProtocol.POP3)
        store = InMemoryAccountStore(account)
        session = FakeMailboxSession(
            [make_fetched("uidl-abc", _build_plain_email())],
            protocol=MailProtocol.POP3,
        )
        await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert f"{INBOX_DAY}/uidl-abc-Test Subject" in repository.mails
        assert store.updates == []


class TestImportFailures:
    @pytest.mark.asyncio
    async def test_failed_message_does_not_stop_run(self, account, store, repository, mime_types):
        session = FakeMailboxSession(
            [
                make_fetched("1", _build_plain_email(subject="One")),
                make_fetched("2", _build_plain_email(subject="Two")),
                make_fetched("3", _build_plain_email(subject="Three")),
            ]
        )
        session.fetch_errors["2"] = RuntimeError("fetch exploded")

        error = await _orchestrator(session, repository, store, mime_types).import_messages(account)

        assert error == "fetch exploded"
        assert sorted(repository.mails) == [f"{INBOX_DAY}/1-One", f"{INBOX_DAY}/3-Three"]
        saved = store.accounts[1]
        assert saved.last_uid == 3
        assert [e.uid for e in saved.import_errors] == ["2"]
        assert "fetch exploded" in saved.import_errors[0].error
        assert "Traceback" in saved.import_errors[0].error
        assert ("2", True) in session.seen_calls

    @pytest.mark.asyncio
    async def test_malformed_message_among_five(self, account, store, repository, mime_types):
        class MalformedAwareParser(MessageParser):
            def parse(self, raw_bytes, **kwargs):
                if b"Subject: Malformed" in raw_bytes:
                    raise ParseFailure("malformed message")
                return super().parse(raw_bytes, **kwargs)

        subjects = ["One", "Two", "Malformed", "Four", "Five"]
        session = FakeMailboxSession(
            [make_fetched(str(uid), _build_plain_email(subject=s)) for uid, s in enumerate(subjects, start=1)]
        )
        orchestrator = _orchestrator(session, repository, store, mime_types, parser=MalformedAwareParser())

        assert await orchestrator.import_messages(account) == "malformed message"
        assert len(repository.mails) == 4
        assert [e.uid for e in store.accounts[1].import_errors] == ["3"]

        rerun = store.accounts[1].model_copy(update={"last_uid": 0})
        await orchestrator.import_messages(rerun)
        assert len(repository.mails) == 4
        assert [e.uid for e in store.accounts[1].import_errors] == ["3"]

    @pytest.mark.asyncio
    async def test_parse_failure_recorded_with_subject(self, account, store, repository, mime_types):
        parser = MagicMock(spec=MessageParser)
        parser.parse.side_effect = ParseFailure("Cannot parse message: broken")
        session = FakeMailboxSession([make_fetched("4", _build_plain_email(subject="Broken one"))])

        orchestrator = _orchestrator(session, repository, store, mime_types, parser=parser)
        error = await orchestrator.import_messages(account)

        assert error == "Cannot parse message: broken"
        entry = store.accounts[1].import_errors[0]
        assert entry.uid == "4"
        assert entry.subject == "Broken one"
        assert repository.mails == {}

    @pytest.mark.asyncio
    async def test_known_failure_not_recorded_twice(self, store, repository, mime_types):
        existing = MailImportError(uid="2", subject="Two", error="old")
        account = make_account(last_uid=1, import_errors=[existing])
        store.accounts[1] = account
        session = FakeMailboxSession([make_fetched("2", _build_plain_email(subject="Two"))])
        session.fetch_errors["2"] = RuntimeError("still broken")

        error = await _orchestrator(session, repository, store, mime_types).import_messages(account)

        assert error == "still broken"
        assert store.updates == []

    @pytest.mark.asyncio
    async def test_store_failure_aborts_run(self, account, store, repository, mime_types):
        store.fail_updates = True
        session = FakeMailboxSession(
            [make_fetched("1", _build_plain_email()), make_fetched("2", _build_plain_email(subject="Two"))]
        )
        with pytest.raises(PersistenceFailure):
            await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert len(repository.mails) == 1
        assert session.closed_with is False

    @pytest.mark.asyncio
    async def test_inactive_account_is_skipped(self, store, repository, mime_types):
        account = make_account(active=False)
        session = FakeMailboxSession([make_fetched("1", _build_plain_email())])
        assert await _orchestrator(session, repository, store, mime_types).import_messages(account) is None
        assert session.closed_with is None
        assert repository.mails == {}


class TestImportFlags:
    @pytest.mark.asyncio
    async def test_seen_state_restored_when_not_marking(self, store, repository, mime_types):
        account = make_account(mark_seen=False)
        session = FakeMailboxSession(
            [
                make_fetched("1", _build_plain_email(), seen=True),
                make_fetched("2", _build_plain_email(subject="Two"), seen=False),
            ]
        )
        await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert session.seen_calls == [("1", True), ("2", False)]

    @pytest.mark.asyncio
    async def test_mark_deleted_expunges(self, store, repository, mime_types):
        account = make_account(mark_deleted=True)
        session = FakeMailboxSession([make_fetched("1", _build_plain_email())])
        await _orchestrator(session, repository, store, mime_types).import_messages(account)
        assert session.deleted == ["1"]
        assert session.closed_with is True


class TestImportFilters:
    def _account(self, *filters: MailFilter) -> MailAccount:
        return make_account(filters=list(filters))

    @pytest.mark.asyncio
    async def test_matching_filters_receive_copies(self, repository, mime_types):
        account = self._account(
            MailFilter(
                path="/mail/bob/Invoices",
                rules=[MailFilterRule(field="subject", operation="contains", value="invoice")],
            ),
            MailFilter(
                path="/mail/bob/Vendors",
                grouping=True,
                rules=[MailFilterRule(field="from", operation="contains", value="vendor.com")],
            ),
        )
        store = InMemoryAccountStore(account)
        raw = _build_plain_email(subject="Invoice 42", from_addr="billing@vendor.com")
        session = FakeMailboxSession([make_fetched("1", raw)])

        await _orchestrator(session, repository, store, mime_types).import_messages(account)

        assert sorted(repository.mails) == [
            "/mail/bob/Invoices/1-Invoice 42",
            "/mail/bob/Vendors/2024/3/5/1-Invoice 42",
        ]

    @pytest.mark.asyncio
    async def test_unmatched_mail_is_not_stored_but_consumed(self, repository, mime_types):
        account = self._account(
            MailFilter(
                path="/mail/bob/Invoices",
                rules=[MailFilterRule(field="subject", operation="contains", value="invoice")],
            )
        )
        store = InMemoryAccountStore(account)
        session = FakeMailboxSession([make_fetched("1", _build_plain_email(subject="Lunch?"))])

        assert await _orchestrator(session, repository, store, mime_types).import_messages(account) is None
        assert repository.mails == {}
        assert store.accounts[1].last_uid == 1
        assert session.seen_calls == [("1", True)]


class TestImportOutlookMessage:
    @pytest.mark.asyncio
    async def test_stores_parsed_message_in_folder(self, store, repository, mime_types):
        outlook = MagicMock()
        outlook.parse.return_value = ParsedMessage(
            mail=make_mail(subject="Budget: Q3"),
            attachments=[ParsedAttachment("plan.xlsx", b"xlsx")],
        )
        orchestrator = _orchestrator(FakeMailboxSession(), repository, store, mime_types, outlook_parser=outlook)

        path = await orchestrator.import_outlook_message(b"msg-bytes", "/docs/uploads/", "alice")

        assert path == "/docs/uploads/Budget Q3"
        outlook.parse.assert_called_once_with(b"msg-bytes")
        assert repository.mails[path].subject == "Budget: Q3"
        assert repository.documents[f"{path}/plan.xlsx"]["owner"] == "alice"

    @pytest.mark.asyncio
    async def test_existing_node_left_alone(self, store, repository, mime_types):
        outlook = MagicMock()
        outlook.parse.return_value = ParsedMessage(mail=make_mail(subject="Dup"))
        orchestrator = _orchestrator(FakeMailboxSession(), repository, store, mime_types, outlook_parser=outlook)

        first = await orchestrator.import_outlook_message(b"x", "/docs", "alice")
        stored = repository.mails[first]
        await orchestrator.import_outlook_message(b"x", "/docs", "alice")
        assert repository.mails[first] is stored
