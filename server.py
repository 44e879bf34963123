import logging
import os

from fastmcp import FastMCP

from tools import (
    archive_email,
    delete_email,
    get_email,
    get_thread,
    list_emails,
    list_identities,
    list_mailboxes,
    mark_read,
    move_email,
    save_draft,
    search_emails,
    send_email,
    set_starred,
)

mcp = FastMCP(
    name="JMAP Mail",
    instructions=(
        "You have access to a JMAP mailbox. Start with list_mailboxes to see "
        "available folders, then use list_emails or search_emails to find "
        "specific messages. Use get_email for full content and get_thread for "
        "conversation context. Use list_identities before send_email."
    ),
)

READ_ONLY = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": False,
}

UPDATES = {
    "readOnlyHint": False,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": False,
}

DESTRUCTIVE = {
    "readOnlyHint": False,
    "destructiveHint": True,
    "idempotentHint": False,
    "openWorldHint": True,
}

for tool in (list_mailboxes, list_emails, get_email, search_emails, get_thread, list_identities):
    mcp.tool(annotations=READ_ONLY)(tool)

for tool in (mark_read, set_starred, move_email, archive_email):
    mcp.tool(annotations=UPDATES)(tool)

for tool in (delete_email, send_email, save_draft):
    mcp.tool(annotations=DESTRUCTIVE)(tool)

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(
        transport="http",
        host=os.environ.get("MCP_HOST", "127.0.0.1"),
        port=int(os.environ.get("MCP_PORT", "8000")),
    )
