"""Typed helpers for the JMAP mail methods.

Each helper builds one request (sometimes several calls linked by
references), sends it as one round trip and turns the answer into models.
Set-style results are checked: any record the server refused raises
`SetItemError`.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from jmap_client import JMAPClient, RequestBuilder
from jmap_errors import IdentityNotFound, MailboxNotFound, SetItemError
from jmap_types import (
    DEFAULT_PAGE_SIZE,
    EMAIL_FULL_PROPERTIES,
    EMAIL_LIST_PROPERTIES,
    MAX_BODY_VALUE_BYTES,
    Capability,
    ChangesResult,
    Email,
    EmailAddress,
    EmailListItem,
    EmailSubmission,
    GetResult,
    Identity,
    Keyword,
    Mailbox,
    QueryResult,
    Role,
    SetResult,
    Thread,
    keyword_path,
    mailbox_path,
)

logger = logging.getLogger(__name__)

NEWEST_FIRST = [{"property": "receivedAt", "isAscending": False}]

_SET_FAILURES = (
    ("not_created", "create"),
    ("not_updated", "update"),
    ("not_destroyed", "destroy"),
)


def check_set_result(result: SetResult) -> SetResult:
    """Raise `SetItemError` for the first record the server refused."""
    for attr, operation in _SET_FAILURES:
        for record_id, error in (getattr(result, attr) or {}).items():
            raise SetItemError(
                error.type,
                error.description,
                record_id=record_id,
                operation=operation,
                properties=error.properties,
            )
    return result


@dataclass
class EmailPage:
    query: QueryResult
    emails: list[EmailListItem]

    @property
    def total(self) -> int:
        if self.query.total is None:
            return len(self.emails)
        return self.query.total


@dataclass
class SendResult:
    email_result: SetResult[Email]
    submission_result: SetResult[EmailSubmission]

    @property
    def email_id(self) -> str | None:
        created = self.email_result.created or {}
        return created["email"].id if "email" in created else None


class MailboxMethods:
    @staticmethod
    async def get_all(client: JMAPClient, account_id: str) -> GetResult[Mailbox]:
        builder = RequestBuilder().add_capability(Capability.MAIL)
        call_id = builder.call("Mailbox/get", {"accountId": account_id, "ids": None})
        parser = await client.execute(builder)
        return parser.get(call_id, GetResult[Mailbox])

    @staticmethod
    async def get(client: JMAPClient, account_id: str, ids: list[str]) -> GetResult[Mailbox]:
        data = await client.call(
            "Mailbox/get", {"accountId": account_id, "ids": ids}, [Capability.MAIL]
        )
        return GetResult[Mailbox].model_validate(data)

    @staticmethod
    async def set(
        client: JMAPClient,
        account_id: str,
        *,
        create: dict[str, dict] | None = None,
        update: dict[str, dict] | None = None,
        destroy: list[str] | None = None,
    ) -> SetResult[Mailbox]:
        args: dict[str, Any] = {"accountId": account_id}
        if create:
            args["create"] = create
        if update:
            args["update"] = update
        if destroy:
            args["destroy"] = destroy
        data = await client.call("Mailbox/set", args, [Capability.MAIL])
        return check_set_result(SetResult[Mailbox].model_validate(data))

    @staticmethod
    def find_by_role(mailboxes: Iterable[Mailbox], role: str) -> Mailbox | None:
        """First mailbox carrying `role`.

        The protocol allows several mailboxes with one role; when that happens
        the first one wins and a warning is logged.
        """
        matches = [m for m in mailboxes if m.role == role]
        if len(matches) > 1:
            logger.warning(
                "%d mailboxes have role %r, using %s",
                len(matches),
                role,
                matches[0].id,
            )
        return matches[0] if matches else None


class EmailMethods:
    @staticmethod
    async def query_and_get(
        client: JMAPClient,
        account_id: str,
        *,
        filter: dict | None = None,
        sort: list[dict] | None = None,
        position: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        properties: list[str] | None = None,
    ) -> EmailPage:
        """Email/query and Email/get in one request.

        The get call's ``ids`` is a back-reference to the query's ``/ids``, so
        the server feeds one into the other.
        """
        builder = RequestBuilder().add_capability(Capability.MAIL)
        query_args: dict[str, Any] = {
            "accountId": account_id,
            "sort": sort or NEWEST_FIRST,
            "position": position,
            "limit": limit,
            "calculateTotal": True,
        }
        if filter is not None:
            query_args["filter"] = filter
        query_id = builder.call("Email/query", query_args)
        get_id = builder.call(
            "Email/get",
            {
                "accountId": account_id,
                "ids": builder.ref(query_id, "/ids"),
                "properties": properties or EMAIL_LIST_PROPERTIES,
            },
        )

        parser = await client.execute(builder)
        query = parser.get(query_id, QueryResult)
        emails = parser.get(get_id, GetResult[EmailListItem])
        return EmailPage(query=query, emails=emails.items)

    @staticmethod
    async def get(
        client: JMAPClient,
        account_id: str,
        ids: list[str],
        properties: list[str] | None = None,
    ) -> GetResult[Email]:
        data = await client.call(
            "Email/get",
            {
                "accountId": account_id,
                "ids": ids,
                "properties": properties or EMAIL_FULL_PROPERTIES,
                "fetchTextBodyValues": True,
                "fetchHTMLBodyValues": True,
                "fetchAllBodyValues": True,
                "maxBodyValueBytes": MAX_BODY_VALUE_BYTES,
            },
            [Capability.MAIL],
        )
        return GetResult[Email].model_validate(data)

    @staticmethod
    def build_filter(
        text: str | None = None,
        *,
        from_address: str | None = None,
        subject: str | None = None,
        after: str | None = None,
        before: str | None = None,
        has_attachment: bool | None = None,
        in_mailbox: str | None = None,
    ) -> dict | None:
        """Combine search criteria into one filter, or None if none were given.

        `after` and `before` are YYYY-MM-DD dates, inclusive.
        """
        conditions = []
        if text:
            conditions.append({"text": text})
        if from_address:
            conditions.append({"from": from_address})
        if subject:
            conditions.append({"subject": subject})
        if after:
            conditions.append({"after": f"{after}T00:00:00Z"})
        if before:
            conditions.append({"before": f"{before}T23:59:59Z"})
        if has_attachment is not None:
            conditions.append({"hasAttachment": has_attachment})
        if in_mailbox:
            conditions.append({"inMailbox": in_mailbox})

        if not conditions:
            return None
        if len(conditions) == 1:
            return conditions[0]
        return {"operator": "AND", "conditions": conditions}

    @staticmethod
    async def search(
        client: JMAPClient,
        account_id: str,
        text: str,
        *,
        in_mailbox: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> EmailPage:
        filter = {"text": text}
        if in_mailbox:
            filter["inMailbox"] = in_mailbox
        return await EmailMethods.query_and_get(client, account_id, filter=filter, limit=limit)

    @staticmethod
    async def update(
        client: JMAPClient, account_id: str, patches: dict[str, dict[str, Any]]
    ) -> SetResult[Email]:
        """Email/set update with one patch object per email ID."""
        data = await client.call(
            "Email/set", {"accountId": account_id, "update": patches}, [Capability.MAIL]
        )
        return check_set_result(SetResult[Email].model_validate(data))

    @staticmethod
    async def add_keyword(
        client: JMAPClient, account_id: str, email_id: str, keyword: str
    ) -> SetResult[Email]:
        return await EmailMethods.update(
            client, account_id, {email_id: {keyword_path(keyword): True}}
        )

    @staticmethod
    async def remove_keyword(
        client: JMAPClient, account_id: str, email_id: str, keyword: str
    ) -> SetResult[Email]:
        return await EmailMethods.update(
            client, account_id, {email_id: {keyword_path(keyword): None}}
        )

    @staticmethod
    async def set_keywords(
        client: JMAPClient, account_id: str, email_id: str, keywords: dict[str, bool]
    ) -> SetResult[Email]:
        """Replace the whole keyword map."""
        return await EmailMethods.update(client, account_id, {email_id: {"keywords": keywords}})

    @staticmethod
    async def move(
        client: JMAPClient,
        account_id: str,
        email_id: str,
        to_mailbox_id: str,
        from_mailbox_id: str | None = None,
    ) -> SetResult[Email]:
        """Move an email into `to_mailbox_id`.

        With `from_mailbox_id` this is a two-entry patch that touches only
        those two memberships. Without it the email's mailboxIds is replaced,
        dropping it from every other mailbox.
        """
        if from_mailbox_id is None:
            patch = {"mailboxIds": {to_mailbox_id: True}}
        else:
            patch = {
                mailbox_path(from_mailbox_id): None,
                mailbox_path(to_mailbox_id): True,
            }
        return await EmailMethods.update(client, account_id, {email_id: patch})

    @staticmethod
    async def destroy(client: JMAPClient, account_id: str, email_ids: list[str]) -> SetResult[Email]:
        data = await client.call(
            "Email/set", {"accountId": account_id, "destroy": email_ids}, [Capability.MAIL]
        )
        return check_set_result(SetResult[Email].model_validate(data))

    @staticmethod
    def _draft(draft: dict[str, Any]) -> dict[str, Any]:
        return {**draft, "keywords": {Keyword.DRAFT: True, **draft.get("keywords", {})}}

    @staticmethod
    async def create_draft(
        client: JMAPClient, account_id: str, draft: dict[str, Any]
    ) -> SetResult[Email]:
        data = await client.call(
            "Email/set",
            {"accountId": account_id, "create": {"draft": EmailMethods._draft(draft)}},
            [Capability.MAIL],
        )
        return check_set_result(SetResult[Email].model_validate(data))

    @staticmethod
    async def replace_draft(
        client: JMAPClient, account_id: str, draft: dict[str, Any], old_draft_id: str
    ) -> SetResult[Email]:
        """Create the new version of a draft and destroy the old one in one call."""
        data = await client.call(
            "Email/set",
            {
                "accountId": account_id,
                "create": {"draft": EmailMethods._draft(draft)},
                "destroy": [old_draft_id],
            },
            [Capability.MAIL],
        )
        return check_set_result(SetResult[Email].model_validate(data))

    @staticmethod
    async def changes(
        client: JMAPClient,
        account_id: str,
        since_state: str,
        max_changes: int | None = None,
    ) -> ChangesResult:
        args: dict[str, Any] = {"accountId": account_id, "sinceState": since_state}
        if max_changes is not None:
            args["maxChanges"] = max_changes
        data = await client.call("Email/changes", args, [Capability.MAIL])
        return ChangesResult.model_validate(data)


class ThreadMethods:
    @staticmethod
    async def get_with_emails(
        client: JMAPClient,
        account_id: str,
        thread_id: str,
        properties: list[str] | None = None,
    ) -> tuple[Thread | None, list[Email]]:
        """A thread and its emails, oldest first, in one request."""
        builder = RequestBuilder()
        thread_call = builder.call("Thread/get", {"accountId": account_id, "ids": [thread_id]})
        emails_call = builder.call(
            "Email/get",
            {
                "accountId": account_id,
                "ids": builder.ref(thread_call, "/list/*/emailIds"),
                "properties": properties or EMAIL_FULL_PROPERTIES,
                "fetchTextBodyValues": True,
            },
        )
        parser = await client.execute(builder)
        threads = parser.get(thread_call, GetResult[Thread])
        emails = parser.get(emails_call, GetResult[Email]).items
        emails.sort(key=lambda e: e.received_at or "")
        return (threads.items[0] if threads.items else None), emails


class IdentityMethods:
    @staticmethod
    async def get_all(client: JMAPClient, account_id: str) -> GetResult[Identity]:
        data = await client.call(
            "Identity/get", {"accountId": account_id, "ids": None}, [Capability.SUBMISSION]
        )
        return GetResult[Identity].model_validate(data)

    @staticmethod
    async def get(client: JMAPClient, account_id: str, ids: list[str]) -> GetResult[Identity]:
        data = await client.call(
            "Identity/get", {"accountId": account_id, "ids": ids}, [Capability.SUBMISSION]
        )
        return GetResult[Identity].model_validate(data)


def _sent_patch(sent_mailbox_id: str, leaving: Iterable[str]) -> dict[str, Any]:
    patch: dict[str, Any] = {mailbox_path(sent_mailbox_id): True}
    for mailbox_id in leaving:
        if mailbox_id != sent_mailbox_id:
            patch[mailbox_path(mailbox_id)] = None
    patch[keyword_path(Keyword.DRAFT)] = None
    patch[keyword_path(Keyword.SEEN)] = True
    return patch


class EmailSubmissionMethods:
    @staticmethod
    async def create_and_send(
        client: JMAPClient,
        account_id: str,
        *,
        identity_id: str,
        sent_mailbox_id: str,
        email: dict[str, Any],
    ) -> SendResult:
        """Create an email and submit it in one request.

        The submission names the new email through its creation id, and its
        ``onSuccessUpdateEmail`` files the email into the sent mailbox and
        clears ``$draft``. Either call failing raises, even if the other one
        went through.
        """
        builder = RequestBuilder().add_capabilities([Capability.MAIL, Capability.SUBMISSION])
        email_call = builder.call("Email/set", {"accountId": account_id, "create": {"email": email}})
        submission_call = builder.call(
            "EmailSubmission/set",
            {
                "accountId": account_id,
                "create": {
                    "submission": {
                        "identityId": identity_id,
                        "emailId": builder.creation_ref("email"),
                    }
                },
                "onSuccessUpdateEmail": {
                    builder.creation_ref("submission"): _sent_patch(
                        sent_mailbox_id, email.get("mailboxIds", {})
                    ),
                },
            },
        )

        parser = await client.execute(builder)
        email_result = check_set_result(parser.get(email_call, SetResult[Email]))
        submission_result = check_set_result(
            parser.get(submission_call, SetResult[EmailSubmission])
        )
        return SendResult(email_result=email_result, submission_result=submission_result)

    @staticmethod
    async def send_draft(
        client: JMAPClient,
        account_id: str,
        *,
        email_id: str,
        identity_id: str,
        sent_mailbox_id: str,
        drafts_mailbox_id: str | None = None,
    ) -> SetResult[EmailSubmission]:
        """Submit an existing draft and move it to the sent mailbox."""
        if drafts_mailbox_id is None:
            patch = {
                "mailboxIds": {sent_mailbox_id: True},
                keyword_path(Keyword.DRAFT): None,
                keyword_path(Keyword.SEEN): True,
            }
        else:
            patch = _sent_patch(sent_mailbox_id, [drafts_mailbox_id])

        builder = RequestBuilder().add_capabilities([Capability.MAIL, Capability.SUBMISSION])
        call_id = builder.call(
            "EmailSubmission/set",
            {
                "accountId": account_id,
                "create": {"submission": {"identityId": identity_id, "emailId": email_id}},
                "onSuccessUpdateEmail": {builder.creation_ref("submission"): patch},
            },
        )
        parser = await client.execute(builder)
        return check_set_result(parser.get(call_id, SetResult[EmailSubmission]))


def _addresses(items: Iterable[EmailAddress | dict | str] | None) -> list[dict] | None:
    if not items:
        return None
    out = []
    for item in items:
        if isinstance(item, str):
            out.append({"email": item})
        elif isinstance(item, EmailAddress):
            out.append(item.model_dump(by_alias=True, exclude_none=True, include={"name", "email"}))
        else:
            out.append(item)
    return out


def _body_parts(text_body: str | None, html_body: str | None) -> dict[str, Any]:
    parts: dict[str, Any] = {}
    values = {}
    if text_body:
        values["text"] = {"value": text_body}
        parts["textBody"] = [{"partId": "text", "type": "text/plain"}]
    if html_body:
        values["html"] = {"value": html_body}
        parts["htmlBody"] = [{"partId": "html", "type": "text/html"}]
    if values:
        parts["bodyValues"] = values
    return parts


class EmailHelper:
    """Mail actions for one account.

    Each method is one user-level operation. Mutations return
    ``{"success": True, ...}`` only when every call in their request
    succeeded, and raise otherwise.
    """

    def __init__(self, client: JMAPClient, account_id: str) -> None:
        self.client = client
        self.account_id = account_id

    # -- mailboxes --------------------------------------------------------

    async def get_mailboxes(self) -> list[Mailbox]:
        result = await MailboxMethods.get_all(self.client, self.account_id)
        return result.items

    async def find_mailbox_by_role(self, role: str) -> Mailbox | None:
        return MailboxMethods.find_by_role(await self.get_mailboxes(), role)

    async def create_mailbox(self, name: str, parent_id: str | None = None) -> Mailbox:
        result = await MailboxMethods.set(
            self.client,
            self.account_id,
            create={"newMailbox": {"name": name, "parentId": parent_id}},
        )
        created = (result.created or {}).get("newMailbox")
        if created is None:
            raise SetItemError(
                "serverFail",
                "Server did not report the created mailbox",
                record_id="newMailbox",
                operation="create",
            )
        return created.model_copy(update={"name": name, "parent_id": parent_id})

    async def delete_mailbox(self, mailbox_id: str) -> dict:
        await MailboxMethods.set(self.client, self.account_id, destroy=[mailbox_id])
        return {"success": True}

    # -- reading ----------------------------------------------------------

    async def list_emails(
        self, mailbox_id: str, limit: int = DEFAULT_PAGE_SIZE, position: int = 0
    ) -> EmailPage:
        return await EmailMethods.query_and_get(
            self.client,
            self.account_id,
            filter={"inMailbox": mailbox_id},
            limit=limit,
            position=position,
        )

    async def get_email(self, email_id: str) -> Email | None:
        result = await EmailMethods.get(self.client, self.account_id, [email_id])
        if email_id in result.not_found or not result.items:
            return None
        return result.items[0]

    async def search_emails(
        self, query: str | None = None, *, limit: int = DEFAULT_PAGE_SIZE, **criteria: Any
    ) -> EmailPage:
        filter = EmailMethods.build_filter(query, **criteria)
        if filter is None:
            raise ValueError("At least one search criterion is required")
        return await EmailMethods.query_and_get(
            self.client, self.account_id, filter=filter, limit=limit
        )

    async def get_thread(self, thread_id: str) -> tuple[Thread | None, list[Email]]:
        return await ThreadMethods.get_with_emails(self.client, self.account_id, thread_id)

    async def get_identities(self) -> list[Identity]:
        result = await IdentityMethods.get_all(self.client, self.account_id)
        return result.items

    # -- flags and filing -------------------------------------------------

    async def mark_as_read(self, email_id: str) -> dict:
        await EmailMethods.add_keyword(self.client, self.account_id, email_id, Keyword.SEEN)
        return {"success": True}

    async def mark_as_unread(self, email_id: str) -> dict:
        await EmailMethods.remove_keyword(self.client, self.account_id, email_id, Keyword.SEEN)
        return {"success": True}

    async def star(self, email_id: str) -> dict:
        await EmailMethods.add_keyword(self.client, self.account_id, email_id, Keyword.FLAGGED)
        return {"success": True}

    async def unstar(self, email_id: str) -> dict:
        await EmailMethods.remove_keyword(self.client, self.account_id, email_id, Keyword.FLAGGED)
        return {"success": True}

    async def move_email(
        self, email_id: str, to_mailbox_id: str, from_mailbox_id: str | None = None
    ) -> dict:
        await EmailMethods.move(
            self.client, self.account_id, email_id, to_mailbox_id, from_mailbox_id
        )
        return {"success": True}

    async def archive_email(self, email_id: str, from_mailbox_id: str | None = None) -> dict:
        archive = await self.find_mailbox_by_role(Role.ARCHIVE)
        if archive is None:
            raise MailboxNotFound(Role.ARCHIVE)
        await EmailMethods.move(
            self.client, self.account_id, email_id, archive.id, from_mailbox_id
        )
        return {"success": True, "mailbox_id": archive.id}

    async def delete_email(
        self, email_id: str, permanent: bool = False, from_mailbox_id: str | None = None
    ) -> dict:
        """Move to trash, or destroy when `permanent` or there is no trash mailbox."""
        if not permanent:
            trash = await self.find_mailbox_by_role(Role.TRASH)
            if trash is not None:
                await EmailMethods.move(
                    self.client, self.account_id, email_id, trash.id, from_mailbox_id
                )
                return {"success": True, "action": "trash", "mailbox_id": trash.id}
            logger.warning("No trash mailbox, destroying email %s", email_id)

        await EmailMethods.destroy(self.client, self.account_id, [email_id])
        return {"success": True, "action": "destroy"}

    # -- composing --------------------------------------------------------

    async def _identities_and_mailboxes(self) -> tuple[list[Identity], list[Mailbox]]:
        builder = RequestBuilder()
        identities_call = builder.call("Identity/get", {"accountId": self.account_id, "ids": None})
        mailboxes_call = builder.call("Mailbox/get", {"accountId": self.account_id, "ids": None})
        parser = await self.client.execute(builder)
        return (
            parser.get(identities_call, GetResult[Identity]).items,
            parser.get(mailboxes_call, GetResult[Mailbox]).items,
        )

    async def send_email(
        self,
        identity_id: str,
        to: list,
        subject: str,
        *,
        cc: list | None = None,
        bcc: list | None = None,
        text_body: str | None = None,
        html_body: str | None = None,
        in_reply_to: str | None = None,
        references: list[str] | None = None,
    ) -> dict:
        identities, mailboxes = await self._identities_and_mailboxes()
        identity = next((i for i in identities if i.id == identity_id), None)
        if identity is None:
            raise IdentityNotFound(identity_id)
        sent = MailboxMethods.find_by_role(mailboxes, Role.SENT)
        if sent is None:
            raise MailboxNotFound(Role.SENT)
        drafts = MailboxMethods.find_by_role(mailboxes, Role.DRAFTS)

        # Without a drafts mailbox the email is created straight into sent.
        email: dict[str, Any] = {
            "mailboxIds": {(drafts or sent).id: True},
            "keywords": {Keyword.DRAFT: True},
            "from": [{"name": identity.name, "email": identity.email}],
            "to": _addresses(to),
            "subject": subject,
            **_body_parts(text_body, html_body),
        }
        for key, value in (
            ("cc", _addresses(cc)),
            ("bcc", _addresses(bcc)),
            ("inReplyTo", [in_reply_to] if in_reply_to else None),
            ("references", references),
        ):
            if value:
                email[key] = value

        result = await EmailSubmissionMethods.create_and_send(
            self.client,
            self.account_id,
            identity_id=identity.id,
            sent_mailbox_id=sent.id,
            email=email,
        )
        return {"success": True, "email_id": result.email_id}

    async def save_draft(
        self,
        *,
        to: list | None = None,
        cc: list | None = None,
        bcc: list | None = None,
        subject: str = "",
        text_body: str | None = None,
        html_body: str | None = None,
        draft_id: str | None = None,
    ) -> dict:
        """Save a draft, replacing `draft_id` in the same call when given."""
        identities, mailboxes = await self._identities_and_mailboxes()
        drafts = MailboxMethods.find_by_role(mailboxes, Role.DRAFTS)
        if drafts is None:
            raise MailboxNotFound(Role.DRAFTS)
        if not identities:
            raise IdentityNotFound()
        identity = identities[0]

        draft: dict[str, Any] = {
            "mailboxIds": {drafts.id: True},
            "from": [{"name": identity.name, "email": identity.email}],
            "to": _addresses(to) or [],
            "subject": subject,
            **_body_parts(text_body, html_body),
        }
        if cc:
            draft["cc"] = _addresses(cc)
        if bcc:
            draft["bcc"] = _addresses(bcc)

        if draft_id:
            result = await EmailMethods.replace_draft(self.client, self.account_id, draft, draft_id)
        else:
            result = await EmailMethods.create_draft(self.client, self.account_id, draft)
        created = (result.created or {}).get("draft")
        return {"success": True, "draft_id": created.id if created else None}
