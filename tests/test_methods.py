"""Tests for the mail method helpers, against FakeJMAP."""

import logging

import pytest

from conftest import IDENTITIES, MAILBOXES, FakeJMAP
from jmap_errors import (
    IdentityNotFound,
    MailboxNotFound,
    RemoteMethodError,
    SetItemError,
)
from jmap_methods import (
    EmailHelper,
    EmailMethods,
    EmailSubmissionMethods,
    MailboxMethods,
    check_set_result,
)
from jmap_types import Capability, Mailbox, SetResult


def _updated(call):
    return {"accountId": "test-account", "updated": {k: None for k in call.args.get("update", {})}}


@pytest.mark.asyncio
async def test_query_and_get_is_one_request_with_back_reference():
    jmap = FakeJMAP(
        {
            "Email/query": {"ids": ["e1", "e2"], "total": 120, "position": 0},
            "Email/get": {
                "list": [
                    {"id": "e1", "threadId": "t1", "subject": "One", "keywords": {"$seen": True}},
                    {"id": "e2", "threadId": "t2", "subject": "Two"},
                ]
            },
        }
    )
    page = await EmailMethods.query_and_get(
        jmap, "test-account", filter={"inMailbox": "mb-inbox"}, limit=2
    )

    assert len(jmap.requests) == 1
    query, get = jmap.requests[0].method_calls
    assert query.name == "Email/query"
    assert query.args["sort"] == [{"property": "receivedAt", "isAscending": False}]
    assert query.args["limit"] == 2
    assert query.args["calculateTotal"] is True
    assert get.name == "Email/get"
    assert "ids" not in get.args
    assert get.args["#ids"] == {"resultOf": query.call_id, "name": "Email/query", "path": "/ids"}
    assert Capability.MAIL in jmap.requests[0].using

    assert page.total == 120
    assert [e.id for e in page.emails] == ["e1", "e2"]
    assert page.emails[0].is_seen and not page.emails[1].is_seen


@pytest.mark.asyncio
async def test_query_and_get_defaults():
    jmap = FakeJMAP({"Email/query": {"ids": []}, "Email/get": {"list": []}})
    page = await EmailMethods.query_and_get(jmap, "test-account")
    query = jmap.calls[0]
    assert query.args["limit"] == 50
    assert query.args["position"] == 0
    assert "filter" not in query.args
    assert page.total == 0


@pytest.mark.asyncio
async def test_query_error_propagates():
    jmap = FakeJMAP(
        {
            "Email/query": ("error", {"type": "unsupportedFilter"}),
            "Email/get": ("error", {"type": "invalidResultReference"}),
        }
    )
    with pytest.raises(RemoteMethodError) as excinfo:
        await EmailMethods.search(jmap, "test-account", "hello")
    assert excinfo.value.type == "unsupportedFilter"


@pytest.mark.asyncio
async def test_move_is_a_single_two_entry_patch():
    jmap = FakeJMAP({"Email/set": _updated})
    await EmailMethods.move(jmap, "test-account", "e1", "B", from_mailbox_id="A")
    assert len(jmap.calls) == 1
    assert jmap.calls[0].args["update"] == {"e1": {"mailboxIds/A": None, "mailboxIds/B": True}}


@pytest.mark.asyncio
async def test_move_without_source_replaces_membership():
    jmap = FakeJMAP({"Email/set": _updated})
    await EmailMethods.move(jmap, "test-account", "e1", "B")
    assert jmap.calls[0].args["update"] == {"e1": {"mailboxIds": {"B": True}}}


@pytest.mark.asyncio
async def test_keyword_patches():
    jmap = FakeJMAP({"Email/set": _updated})
    helper = EmailHelper(jmap, "test-account")
    await helper.mark_as_read("e1")
    await helper.mark_as_unread("e1")
    await helper.star("e1")
    assert await helper.unstar("e1") == {"success": True}
    assert [c.args["update"]["e1"] for c in jmap.calls] == [
        {"keywords/$seen": True},
        {"keywords/$seen": None},
        {"keywords/$flagged": True},
        {"keywords/$flagged": None},
    ]


@pytest.mark.asyncio
async def test_not_updated_raises_with_properties():
    jmap = FakeJMAP(
        {
            "Email/set": {
                "notUpdated": {
                    "e1": {
                        "type": "invalidProperties",
                        "description": "bad patch",
                        "properties": ["keywords/$seen"],
                    }
                }
            }
        }
    )
    with pytest.raises(SetItemError) as excinfo:
        await EmailHelper(jmap, "test-account").mark_as_read("e1")
    assert excinfo.value.record_id == "e1"
    assert excinfo.value.operation == "update"
    assert excinfo.value.properties == ["keywords/$seen"]
    assert "Failed properties: keywords/$seen" in str(excinfo.value)


def test_check_set_result_passes_clean_result():
    result = SetResult.model_validate({"accountId": "a", "destroyed": ["e1"], "notDestroyed": {}})
    assert check_set_result(result) is result


@pytest.mark.asyncio
async def test_delete_moves_to_trash_when_present():
    jmap = FakeJMAP({"Mailbox/get": {"list": MAILBOXES}, "Email/set": _updated})
    result = await EmailHelper(jmap, "test-account").delete_email("e1")
    assert result["action"] == "trash"
    email_set = [c for c in jmap.calls if c.name == "Email/set"]
    assert len(email_set) == 1
    assert "destroy" not in email_set[0].args
    assert email_set[0].args["update"] == {"e1": {"mailboxIds": {"mb-trash": True}}}


@pytest.mark.asyncio
async def test_delete_destroys_without_trash(caplog):
    mailboxes = [m for m in MAILBOXES if m["role"] != "trash"]
    jmap = FakeJMAP({"Mailbox/get": {"list": mailboxes}, "Email/set": {"destroyed": ["e1"]}})
    with caplog.at_level(logging.WARNING):
        result = await EmailHelper(jmap, "test-account").delete_email("e1")
    assert result == {"success": True, "action": "destroy"}
    email_set = [c for c in jmap.calls if c.name == "Email/set"]
    assert email_set[0].args["destroy"] == ["e1"]
    assert "update" not in email_set[0].args
    assert "No trash mailbox" in caplog.text


@pytest.mark.asyncio
async def test_permanent_delete_skips_trash_lookup():
    jmap = FakeJMAP({"Email/set": {"destroyed": ["e1"]}})
    await EmailHelper(jmap, "test-account").delete_email("e1", permanent=True)
    assert [c.name for c in jmap.calls] == ["Email/set"]


@pytest.mark.asyncio
async def test_not_destroyed_raises():
    jmap = FakeJMAP({"Email/set": {"notDestroyed": {"e1": {"type": "notFound"}}}})
    with pytest.raises(SetItemError) as excinfo:
        await EmailMethods.destroy(jmap, "test-account", ["e1"])
    assert excinfo.value.type == "notFound"
    assert excinfo.value.operation == "destroy"


@pytest.mark.asyncio
async def test_archive_uses_patch_when_source_known():
    jmap = FakeJMAP({"Mailbox/get": {"list": MAILBOXES}, "Email/set": _updated})
    result = await EmailHelper(jmap, "test-account").archive_email("e1", "mb-inbox")
    assert result["mailbox_id"] == "mb-archive"
    assert jmap.calls[-1].args["update"] == {
        "e1": {"mailboxIds/mb-inbox": None, "mailboxIds/mb-archive": True}
    }


@pytest.mark.asyncio
async def test_archive_without_archive_mailbox_fails():
    mailboxes = [m for m in MAILBOXES if m["role"] != "archive"]
    jmap = FakeJMAP({"Mailbox/get": {"list": mailboxes}})
    with pytest.raises(MailboxNotFound) as excinfo:
        await EmailHelper(jmap, "test-account").archive_email("e1")
    assert excinfo.value.role == "archive"
    assert all(c.name != "Email/set" for c in jmap.calls)


def test_find_by_role_first_match(caplog):
    mailboxes = [
        Mailbox(id="t1", name="Trash", role="trash"),
        Mailbox(id="t2", name="Deleted Items", role="trash"),
        Mailbox(id="x", name="Custom"),
    ]
    with caplog.at_level(logging.WARNING):
        assert MailboxMethods.find_by_role(mailboxes, "trash").id == "t1"
    assert "2 mailboxes have role 'trash'" in caplog.text
    assert MailboxMethods.find_by_role(mailboxes, "archive") is None


def _send_responses(submission_result):
    return {
        "Identity/get": {"list": IDENTITIES},
        "Mailbox/get": {"list": MAILBOXES},
        "Email/set": {
            "accountId": "test-account",
            "created": {"email": {"id": "M1", "blobId": "B1", "threadId": "T1", "size": 100}},
        },
        "EmailSubmission/set": submission_result,
    }


@pytest.mark.asyncio
async def test_create_and_send_builds_one_atomic_request():
    jmap = FakeJMAP(
        _send_responses({"created": {"submission": {"id": "S1", "undoStatus": "pending"}}})
    )
    result = await EmailSubmissionMethods.create_and_send(
        jmap,
        "test-account",
        identity_id="id-1",
        sent_mailbox_id="mb-sent",
        email={"mailboxIds": {"mb-drafts": True}, "subject": "Hi"},
    )

    assert len(jmap.requests) == 1
    request = jmap.requests[0]
    assert set(request.using) == {Capability.CORE, Capability.MAIL, Capability.SUBMISSION}
    email_call, submission_call = request.method_calls
    assert email_call.name == "Email/set"
    assert email_call.args["create"] == {"email": {"mailboxIds": {"mb-drafts": True}, "subject": "Hi"}}
    assert submission_call.name == "EmailSubmission/set"
    assert submission_call.args["create"] == {
        "submission": {"identityId": "id-1", "emailId": "#email"}
    }
    assert submission_call.args["onSuccessUpdateEmail"] == {
        "#submission": {
            "mailboxIds/mb-sent": True,
            "mailboxIds/mb-drafts": None,
            "keywords/$draft": None,
            "keywords/$seen": True,
        }
    }
    assert result.email_id == "M1"
    assert result.submission_result.created["submission"].undo_status == "pending"


@pytest.mark.asyncio
async def test_send_fails_when_submission_fails_after_email_created():
    jmap = FakeJMAP(
        _send_responses(
            {
                "accountId": "test-account",
                "notCreated": {
                    "submission": {
                        "type": "invalidProperties",
                        "description": "Bad recipient",
                        "properties": ["envelope"],
                    }
                },
            }
        )
    )
    helper = EmailHelper(jmap, "test-account")
    with pytest.raises(SetItemError) as excinfo:
        await helper.send_email("id-1", ["bob@example.com"], "Hello", text_body="Hi Bob")
    assert excinfo.value.type == "invalidProperties"
    assert excinfo.value.record_id == "submission"
    assert excinfo.value.properties == ["envelope"]


@pytest.mark.asyncio
async def test_send_fails_when_submission_call_errors():
    jmap = FakeJMAP(_send_responses(("error", {"type": "forbiddenFrom"})))
    with pytest.raises(RemoteMethodError):
        await EmailHelper(jmap, "test-account").send_email("id-1", ["bob@example.com"], "Hello")


@pytest.mark.asyncio
async def test_send_email_composes_message():
    jmap = FakeJMAP(_send_responses({"created": {"submission": {"id": "S1"}}}))
    result = await EmailHelper(jmap, "test-account").send_email(
        "id-1",
        ["bob@example.com"],
        "Hello",
        cc=[{"name": "Carol", "email": "carol@example.com"}],
        text_body="Hi Bob",
        html_body="<p>Hi Bob</p>",
        in_reply_to="<abc@example.com>",
    )
    assert result == {"success": True, "email_id": "M1"}

    lookup, send = jmap.requests
    assert [c.name for c in lookup.method_calls] == ["Identity/get", "Mailbox/get"]
    email = send.method_calls[0].args["create"]["email"]
    assert email["mailboxIds"] == {"mb-drafts": True}
    assert email["from"] == [{"name": "Evie", "email": "evie@example.com"}]
    assert email["to"] == [{"email": "bob@example.com"}]
    assert email["cc"] == [{"name": "Carol", "email": "carol@example.com"}]
    assert email["inReplyTo"] == ["<abc@example.com>"]
    assert email["bodyValues"] == {"text": {"value": "Hi Bob"}, "html": {"value": "<p>Hi Bob</p>"}}
    assert email["textBody"] == [{"partId": "text", "type": "text/plain"}]
    assert email["htmlBody"] == [{"partId": "html", "type": "text/html"}]
    assert "bcc" not in email


@pytest.mark.asyncio
async def test_send_email_unknown_identity():
    jmap = FakeJMAP(_send_responses({}))
    with pytest.raises(IdentityNotFound):
        await EmailHelper(jmap, "test-account").send_email("id-9", ["bob@example.com"], "Hello")
    assert len(jmap.requests) == 1


@pytest.mark.asyncio
async def test_send_email_requires_sent_mailbox():
    responses = _send_responses({})
    responses["Mailbox/get"] = {"list": [m for m in MAILBOXES if m["role"] != "sent"]}
    jmap = FakeJMAP(responses)
    with pytest.raises(MailboxNotFound):
        await EmailHelper(jmap, "test-account").send_email("id-1", ["bob@example.com"], "Hello")


@pytest.mark.asyncio
async def test_send_draft_moves_out_of_drafts():
    jmap = FakeJMAP({"EmailSubmission/set": {"created": {"submission": {"id": "S1"}}}})
    await EmailSubmissionMethods.send_draft(
        jmap,
        "test-account",
        email_id="M1",
        identity_id="id-1",
        sent_mailbox_id="mb-sent",
        drafts_mailbox_id="mb-drafts",
    )
    call = jmap.calls[0]
    assert call.args["create"]["submission"]["emailId"] == "M1"
    assert call.args["onSuccessUpdateEmail"]["#submission"]["mailboxIds/mb-drafts"] is None


@pytest.mark.asyncio
async def test_send_draft_without_drafts_mailbox_replaces_membership():
    jmap = FakeJMAP({"EmailSubmission/set": {"created": {"submission": {"id": "S1"}}}})
    await EmailSubmissionMethods.send_draft(
        jmap, "test-account", email_id="M1", identity_id="id-1", sent_mailbox_id="mb-sent"
    )
    assert jmap.calls[0].args["onSuccessUpdateEmail"] == {
        "#submission": {
            "mailboxIds": {"mb-sent": True},
            "keywords/$draft": None,
            "keywords/$seen": True,
        }
    }


@pytest.mark.asyncio
async def test_save_draft_replaces_old_version_in_one_call():
    jmap = FakeJMAP(
        {
            "Identity/get": {"list": IDENTITIES},
            "Mailbox/get": {"list": MAILBOXES},
            "Email/set": {"created": {"draft": {"id": "D2"}}, "destroyed": ["D1"]},
        }
    )
    result = await EmailHelper(jmap, "test-account").save_draft(
        to=["bob@example.com"], subject="Later", text_body="draft", draft_id="D1"
    )
    assert result == {"success": True, "draft_id": "D2"}
    email_set = jmap.calls[-1]
    assert email_set.args["destroy"] == ["D1"]
    draft = email_set.args["create"]["draft"]
    assert draft["keywords"] == {"$draft": True}
    assert draft["mailboxIds"] == {"mb-drafts": True}


@pytest.mark.asyncio
async def test_create_mailbox_not_created():
    jmap = FakeJMAP(
        {"Mailbox/set": {"notCreated": {"newMailbox": {"type": "invalidProperties", "properties": ["name"]}}}}
    )
    with pytest.raises(SetItemError, match="Failed properties: name"):
        await EmailHelper(jmap, "test-account").create_mailbox("")


@pytest.mark.asyncio
async def test_create_mailbox_missing_from_created():
    jmap = FakeJMAP({"Mailbox/set": {"created": None}})
    with pytest.raises(SetItemError, match="Failed to create newMailbox"):
        await EmailHelper(jmap, "test-account").create_mailbox("Receipts")


@pytest.mark.asyncio
async def test_create_and_delete_mailbox():
    jmap = FakeJMAP(
        {
            "Mailbox/set": lambda call: (
                {"created": {"newMailbox": {"id": "mb-new"}}}
                if "create" in call.args
                else {"destroyed": call.args["destroy"]}
            )
        }
    )
    helper = EmailHelper(jmap, "test-account")
    mailbox = await helper.create_mailbox("Receipts", parent_id="mb-projects")
    assert (mailbox.id, mailbox.name, mailbox.parent_id) == ("mb-new", "Receipts", "mb-projects")
    assert await helper.delete_mailbox("mb-new") == {"success": True}
    assert jmap.calls[1].args["destroy"] == ["mb-new"]


@pytest.mark.asyncio
async def test_get_thread_uses_thread_back_reference():
    jmap = FakeJMAP(
        {
            "Thread/get": {"list": [{"id": "t1", "emailIds": ["e1", "e2"]}]},
            "Email/get": {
                "list": [
                    {"id": "e2", "receivedAt": "2026-02-20T11:00:00Z"},
                    {"id": "e1", "receivedAt": "2026-02-20T10:00:00Z"},
                ]
            },
        }
    )
    thread, emails = await EmailHelper(jmap, "test-account").get_thread("t1")
    assert thread.email_ids == ["e1", "e2"]
    assert [e.id for e in emails] == ["e1", "e2"]
    assert jmap.calls[1].args["#ids"]["path"] == "/list/*/emailIds"


def test_build_filter():
    assert EmailMethods.build_filter() is None
    assert EmailMethods.build_filter("invoice") == {"text": "invoice"}
    assert EmailMethods.build_filter("invoice", after="2026-01-01", in_mailbox="mb") == {
        "operator": "AND",
        "conditions": [
            {"text": "invoice"},
            {"after": "2026-01-01T00:00:00Z"},
            {"inMailbox": "mb"},
        ],
    }


@pytest.mark.asyncio
async def test_changes():
    jmap = FakeJMAP(
        {"Email/changes": {"oldState": "1", "newState": "2", "created": ["e3"], "hasMoreChanges": False}}
    )
    changes = await EmailMethods.changes(jmap, "test-account", "1", max_changes=10)
    assert changes.created == ["e3"]
    assert jmap.calls[0].args == {"accountId": "test-account", "sinceState": "1", "maxChanges": 10}
