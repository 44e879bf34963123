import functools

from fastmcp.exceptions import ToolError

from jmap_client import JMAPClient
from jmap_errors import JMAPError
from jmap_methods import EmailHelper, EmailMethods
from jmap_types import Email, EmailListItem

jmap = JMAPClient()


async def _helper() -> EmailHelper:
    """Ensure the JMAP session is discovered, return a helper for its account."""
    account_id = await jmap.connect()
    return EmailHelper(jmap, account_id)


def _tool(fn):
    """Report JMAP failures to the MCP client as tool errors."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except JMAPError as exc:
            raise ToolError(str(exc)) from exc

    return wrapper


def _format_addrs(addrs) -> str:
    if not addrs:
        return "none"
    return ", ".join(str(a) for a in addrs)


def _format_summary(e: EmailListItem) -> list[str]:
    sender = str(e.from_[0]) if e.from_ else "unknown"
    marks = []
    if e.is_flagged:
        marks.append("[starred]")
    if not e.is_seen:
        marks.append("[unread]")
    return [
        " ".join([f"\n**{e.subject or '(no subject)'}**", *marks]),
        f"  From: {sender}",
        f"  Date: {(e.received_at or '')[:10]}",
        f"  {(e.preview or '')[:150]}",
        f"  [id:{e.id}] [thread:{e.thread_id}]",
    ]


def _format_email(e: Email) -> str:
    attachments = ""
    if e.attachments:
        att_names = [a.name or "unnamed" for a in e.attachments]
        attachments = f"\nAttachments: {', '.join(att_names)}"

    return (
        f"**{e.subject}**\n"
        f"From: {_format_addrs(e.from_)}\n"
        f"To: {_format_addrs(e.to)}\n"
        f"CC: {_format_addrs(e.cc)}\n"
        f"Date: {e.received_at}\n"
        f"{attachments}\n"
        f"---\n{e.body_text()}"
    )


@_tool
async def list_mailboxes() -> str:
    """List all mailboxes with message counts."""
    helper = await _helper()
    mailboxes = await helper.get_mailboxes()
    lines = []
    for mb in sorted(mailboxes, key=lambda m: m.name):
        unread = f" ({mb.unread_emails} unread)" if mb.unread_emails else ""
        role = f" [role:{mb.role}]" if mb.role else ""
        lines.append(f"- {mb.name}: {mb.total_emails} emails{unread}{role} [id:{mb.id}]")
    return "\n".join(lines)


@_tool
async def list_emails(mailbox_id: str, limit: int = 20, position: int = 0) -> str:
    """List emails in a mailbox, showing sender, subject, date, and snippet.

    Args:
        mailbox_id: The mailbox ID (from list_mailboxes).
        limit: Number of emails to return (default 20, max 50).
        position: Offset for pagination (default 0).
    """
    helper = await _helper()
    page = await helper.list_emails(mailbox_id, limit=min(limit, 50), position=position)
    lines = [f"Showing {len(page.emails)} of {page.total} emails (offset {position}):"]
    for e in page.emails:
        lines.extend(_format_summary(e))
    return "\n".join(lines)


@_tool
async def get_email(email_id: str) -> str:
    """Get the full content of an email by ID.

    Args:
        email_id: The email ID (from list_emails or search_emails).
    """
    helper = await _helper()
    email = await helper.get_email(email_id)
    if email is None:
        return f"Email {email_id} not found."
    return _format_email(email)


@_tool
async def search_emails(
    query: str | None = None,
    from_address: str | None = None,
    subject: str | None = None,
    after: str | None = None,
    before: str | None = None,
    has_attachment: bool | None = None,
    mailbox_id: str | None = None,
    limit: int = 20,
) -> str:
    """Search emails by various criteria.

    Args:
        query: Full-text search across all fields.
        from_address: Filter by sender email address.
        subject: Filter by subject text.
        after: Only emails after this date (YYYY-MM-DD).
        before: Only emails before this date (YYYY-MM-DD).
        has_attachment: Filter emails with/without attachments.
        mailbox_id: Only search this mailbox.
        limit: Max results (default 20, max 50).
    """
    criteria = {
        "from_address": from_address,
        "subject": subject,
        "after": after,
        "before": before,
        "has_attachment": has_attachment,
        "in_mailbox": mailbox_id,
    }
    if EmailMethods.build_filter(query, **criteria) is None:
        return "Please provide at least one search criterion."

    helper = await _helper()
    page = await helper.search_emails(query, limit=min(limit, 50), **criteria)
    if not page.emails:
        return "No emails found matching your search."
    lines = [f"Found {page.total} results (showing {len(page.emails)}):"]
    for e in page.emails:
        lines.extend(_format_summary(e))
    return "\n".join(lines)


@_tool
async def get_thread(thread_id: str) -> str:
    """Get all emails in a conversation thread.

    Args:
        thread_id: The thread ID (from list_emails or search_emails).
    """
    helper = await _helper()
    thread, emails = await helper.get_thread(thread_id)
    if thread is None:
        return f"Thread {thread_id} not found."

    lines = [
        f"Thread: {emails[0].subject if emails else 'unknown'} ({len(emails)} messages)"
    ]
    for e in emails:
        sender = str(e.from_[0]) if e.from_ else "unknown"
        body = e.body_text() or e.preview or ""
        lines.append(f"\n--- {sender} ({e.received_at}) ---")
        lines.append(body[:2000])
    return "\n".join(lines)


@_tool
async def list_identities() -> str:
    """List the identities (from addresses) email can be sent as."""
    helper = await _helper()
    identities = await helper.get_identities()
    if not identities:
        return "No identities found."
    return "\n".join(f"- {i.name} <{i.email}> [id:{i.id}]" for i in identities)


@_tool
async def mark_read(email_id: str, read: bool = True) -> str:
    """Mark an email as read or unread.

    Args:
        email_id: The email ID.
        read: True to mark read, False to mark unread.
    """
    helper = await _helper()
    if read:
        await helper.mark_as_read(email_id)
        return f"Marked {email_id} as read."
    await helper.mark_as_unread(email_id)
    return f"Marked {email_id} as unread."


@_tool
async def set_starred(email_id: str, starred: bool = True) -> str:
    """Star (flag) or unstar an email.

    Args:
        email_id: The email ID.
        starred: True to star, False to unstar.
    """
    helper = await _helper()
    if starred:
        await helper.star(email_id)
        return f"Starred {email_id}."
    await helper.unstar(email_id)
    return f"Unstarred {email_id}."


@_tool
async def move_email(email_id: str, to_mailbox_id: str, from_mailbox_id: str | None = None) -> str:
    """Move an email to another mailbox.

    Args:
        email_id: The email ID.
        to_mailbox_id: Destination mailbox ID.
        from_mailbox_id: Mailbox to take it out of. If omitted, the email is
            removed from every other mailbox.
    """
    helper = await _helper()
    await helper.move_email(email_id, to_mailbox_id, from_mailbox_id)
    return f"Moved {email_id} to {to_mailbox_id}."


@_tool
async def archive_email(email_id: str, from_mailbox_id: str | None = None) -> str:
    """Move an email to the archive mailbox.

    Args:
        email_id: The email ID.
        from_mailbox_id: Mailbox the email is currently in, if known.
    """
    helper = await _helper()
    result = await helper.archive_email(email_id, from_mailbox_id)
    return f"Archived {email_id} to {result['mailbox_id']}."


@_tool
async def delete_email(email_id: str, permanent: bool = False) -> str:
    """Move an email to the trash, or delete it permanently.

    Args:
        email_id: The email ID.
        permanent: Skip the trash and destroy the email.
    """
    helper = await _helper()
    result = await helper.delete_email(email_id, permanent=permanent)
    if result["action"] == "trash":
        return f"Moved {email_id} to trash."
    return f"Permanently deleted {email_id}."


@_tool
async def send_email(
    identity_id: str,
    to: list[str],
    subject: str,
    body: str,
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    in_reply_to: str | None = None,
) -> str:
    """Send a plain-text email.

    Args:
        identity_id: The identity to send as (from list_identities).
        to: Recipient email addresses.
        subject: Subject line.
        body: Plain-text body.
        cc: CC addresses.
        bcc: BCC addresses.
        in_reply_to: Message-ID of the email being replied to.
    """
    helper = await _helper()
    result = await helper.send_email(
        identity_id,
        to,
        subject,
        cc=cc,
        bcc=bcc,
        text_body=body,
        in_reply_to=in_reply_to,
    )
    return f"Sent. [id:{result['email_id']}]"


@_tool
async def save_draft(
    subject: str = "",
    body: str | None = None,
    to: list[str] | None = None,
    cc: list[str] | None = None,
    draft_id: str | None = None,
) -> str:
    """Save a draft, replacing an earlier version when draft_id is given.

    Args:
        subject: Subject line.
        body: Plain-text body.
        to: Recipient email addresses.
        cc: CC addresses.
        draft_id: ID of the draft being replaced.
    """
    helper = await _helper()
    result = await helper.save_draft(
        to=to, cc=cc, subject=subject, text_body=body, draft_id=draft_id
    )
    return f"Draft saved. [id:{result['draft_id']}]"
