"""Entry point: python -m tabstash"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from tabstash.archive.controller import ArchiveController
from tabstash.archive.repository import parse_group_id
from tabstash.archive.tab_list import TabList
from tabstash.infrastructure.config import ArchivePreferences
from tabstash.infrastructure.errors import TabstashError
from tabstash.infrastructure.logger import install_exception_hooks, logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tabstash", description="Archive browser tabs into sessions")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="Print the archive as JSON")
    list_cmd.add_argument("--by-domain", action="store_true", help="Group tabs by domain instead of session")

    save = sub.add_parser("save", help="Archive tabs from a JSON file of {url, title} objects")
    save.add_argument("file", type=Path)
    save.add_argument("--session", type=int, default=None, help="Append to an existing session")

    delete_tab = sub.add_parser("delete-tab", help="Delete one archived tab")
    delete_tab.add_argument("id", type=int)

    delete_group = sub.add_parser("delete-group", help="Delete a session or domain and all its tabs")
    delete_group.add_argument("grouping", choices=["session", "domain"])
    delete_group.add_argument("id")

    restore_tab = sub.add_parser("restore-tab", help="Print the URL to reopen for an archived tab")
    restore_tab.add_argument("id", type=int)

    sub.add_parser("delete-all", help="Delete everything")
    return parser


async def main(args: argparse.Namespace, controller: ArchiveController | None = None) -> int:
    controller = controller or ArchiveController()
    try:
        if args.command == "list":
            view = await (controller.get_archive_by_domain() if args.by_domain else controller.get_archive())
            print(view.model_dump_json(indent=2))
        elif args.command == "save":
            entries = json.loads(args.file.read_text())
            tab_list = TabList.from_browser_tabs(
                ((entry["url"], entry.get("title", "")) for entry in entries),
                controller.preferences,
                session_id=args.session,
            )
            session_id = await controller.save_tab_list(tab_list)
            print(json.dumps({"session_id": session_id, "saved": len(tab_list)}))
        elif args.command == "delete-tab":
            await controller.delete_tab(args.id)
        elif args.command == "delete-group":
            store = await controller.ready
            group_id = parse_group_id(args.id, args.grouping)
            if args.grouping == "session":
                tabs = store.get_tabs_for_sessions([group_id])[group_id]
            else:
                tabs = store.get_tabs_for_domains([group_id])[group_id]
            await controller.delete_group(
                {"grouping": args.grouping, "id": group_id, "tab_ids": [tab.id for tab in tabs]}
            )
        elif args.command == "restore-tab":
            request = await controller.restore_tab(args.id)
            print(request.model_dump_json())
        elif args.command == "delete-all":
            await controller.delete_all()
    except TabstashError as err:
        logger.error("Command failed", command=args.command, error=str(err))
        return 1
    finally:
        controller.close()
    return 0


def run() -> None:
    install_exception_hooks()
    args = build_parser().parse_args()
    try:
        sys.exit(asyncio.run(main(args, ArchiveController(preferences=ArchivePreferences()))))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
