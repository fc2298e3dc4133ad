"""Console entry point.

Usage:
    python main.py [--name NAME]

Lines are sent to the active channel; commands start with a slash (/help).
"""

import argparse
import asyncio
import logging

from chatgenius.core.config import get_settings
from chatgenius.core.exceptions import ChatGeniusError
from chatgenius.core.logging import configure_logging
from chatgenius.services.client import ChatClient

logger = logging.getLogger(__name__)

HELP = """\
/channels              list your channels
/switch NAME           make a channel active
/create NAME [DESC]    create and join a channel
/join CHANNEL_ID       join a channel by id
/leave                 leave the active channel
/who                   members of the active channel
/edit MESSAGE_ID TEXT  edit one of your messages
/delete MESSAGE_ID     delete one of your messages
/ask USER_NAME QUERY   ask the assistant about a member's messages
/logout                log out and quit
/quit                  quit"""


def render_messages(client: ChatClient, limit: int = 20) -> None:
    for message in client.messages.messages[-limit:]:
        stamp = message.created_at.strftime("%H:%M")
        text = "(message deleted)" if message.is_deleted else message.content
        print(f"[{stamp}] {message.user_name}: {text}  ({message.id[:8]})")


async def handle_command(client: ChatClient, line: str) -> bool:
    """Run one slash command. Returns False to quit."""
    command, _, rest = line[1:].partition(" ")
    directory = client.directory

    if command == "help":
        print(HELP)
    elif command == "channels":
        for channel in directory.list_channels():
            marker = "*" if directory.active_channel and directory.active_channel.id == channel.id else " "
            print(f"{marker} #{channel.name}  {channel.id}")
    elif command == "switch":
        match = next((c for c in directory.list_channels() if c.name == rest.strip()), None)
        if match is None:
            print(f"No channel named {rest.strip()!r}")
        else:
            await directory.set_active_channel(match)
            render_messages(client)
    elif command == "create":
        name, _, description = rest.partition(" ")
        channel = await directory.create_channel(name, description or None)
        print(f"Created #{channel.name}")
    elif command == "join":
        await directory.join_channel(rest.strip())
    elif command == "leave":
        if directory.active_channel is not None:
            await directory.leave_channel(directory.active_channel.id)
    elif command == "who":
        for user in client.roster.list_channel_users():
            print(f"{user.name} ({user.status.value})")
    elif command == "edit":
        prefix, _, content = rest.partition(" ")
        target = next((m for m in client.messages.messages if m.id.startswith(prefix)), None)
        if target is not None:
            await client.messages.edit_message(target.id, content)
    elif command == "delete":
        target = next((m for m in client.messages.messages if m.id.startswith(rest.strip())), None)
        if target is not None:
            await client.messages.delete_message(target.id)
    elif command == "ask":
        name, _, query = rest.partition(" ")
        author = next((a for a in client.messages.authors() if a.name == name), None)
        if author is None:
            print(f"No messages from {name!r} in this channel")
        else:
            print(await client.assistant.ask(query, author.id))
    elif command == "logout":
        await client.session.logout()
        return False
    elif command == "quit":
        return False
    else:
        print(f"Unknown command /{command}, try /help")
    return True


async def run(name: str | None) -> None:
    settings = get_settings()
    configure_logging(settings)

    client = ChatClient.from_settings(settings)
    await client.start()
    try:
        if not client.session.is_authenticated:
            await client.session.login(name)
        user = client.session.user
        print(f"Logged in as {user.name}. Type /help for commands.")

        seen: set[str] = set()
        scope = None

        async def show_new_messages() -> None:
            nonlocal scope
            fresh = [m for m in client.messages.visible_messages if m.id not in seen]
            seen.update(m.id for m in fresh)
            # A new channel's backlog is shown by render_messages
            if client.messages.key != scope:
                scope = client.messages.key
                return
            for message in fresh:
                if message.user_id != client.session.user_id:
                    print(f"\n{message.user_name}: {message.content}")

        client.messages.add_listener(show_new_messages)
        client.session.on_focus()
        channels = client.directory.list_channels()
        if channels:
            await client.directory.set_active_channel(channels[0])
            render_messages(client)

        while True:
            line = (await asyncio.to_thread(input, "> ")).strip()
            if not line:
                continue
            try:
                if line.startswith("/"):
                    if not await handle_command(client, line):
                        break
                else:
                    await client.messages.send_message(line)
            except ChatGeniusError as e:
                print(f"Error: {e.message}")
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="chatgenius console client")
    parser.add_argument("--name", help="display name (default: a random guest name)")
    args = parser.parse_args()
    asyncio.run(run(args.name))


if __name__ == "__main__":
    main()
