"""
passvault - a local, offline password vault

Command-line front end. Each command function receives the unlocked
engine it operates on; nothing here touches keys or file formats.
"""
# ==============================================================
# Standard imports
# ==============================================================
import argparse
import getpass
import logging
import sys
from pathlib import Path

# ==============================================================
# Other imports
# ==============================================================
import pendulum

from passvault.config.config_vault import *
from passvault.config.logging_config import setup_logging, stamp
from passvault.utils.clipboard_utils import clear_clipboard, copy_to_clipboard, wait_and_clear
from passvault.utils.errors import VaultError
from passvault.utils.password_generator import CharsetOptions
from passvault.utils.vault_engine import VaultEngine, create, unlock

logger = logging.getLogger(__name__)


# ==============================================================
# Helpers
# ==============================================================
def ask_new_passphrase(prompt: str = "New master password: ") -> str | None:
    """Prompt twice; None if the entries differ or are empty."""
    pw = getpass.getpass(prompt)
    confirm = getpass.getpass("Confirm master password: ")
    if pw != confirm:
        print("Passwords do not match.", file=sys.stderr)
        return None
    if not pw:
        print("Master password cannot be empty!", file=sys.stderr)
        return None
    return pw


def charset_from_args(args) -> CharsetOptions:
    return CharsetOptions.alnum() if args.alnum else CharsetOptions()


def reveal(args, password: str) -> None:
    """
    Print the password or put it on the clipboard.

    A copied password is remembered on `args` so `run` can clear it once
    the vault has been saved and locked.
    """
    if args.show or not copy_to_clipboard(password):
        print(password)
    else:
        args.copied = password


def ask_entry_password(prompt: str) -> str | None:
    password = getpass.getpass(prompt)
    if not password:
        print("Password cannot be empty!", file=sys.stderr)
        return None
    return password


def fmt_time(dt: pendulum.DateTime) -> str:
    return dt.in_timezone("local").format(DT_FORMAT)


def print_summaries(rows) -> None:
    if not rows:
        print("  No entries found.")
        return
    print(SEP_SM)
    print(f" {'Name':<{SITE_LEN}}  {'Username':<{ACCOUNT_LEN}}  Updated")
    print(SEP_SM)
    for name, username, updated_at in rows:
        name = name if len(name) <= SITE_LEN else name[:SITE_LEN - 3] + "..."
        username = username if len(username) <= ACCOUNT_LEN else username[:ACCOUNT_LEN - 3] + "..."
        print(f" {name:<{SITE_LEN}}  {username:<{ACCOUNT_LEN}}  {fmt_time(updated_at)}")


# ==============================================================
# Commands
# ==============================================================
def cmd_list(vault: VaultEngine, args) -> int:
    print_summaries(vault.list_entries())
    return 0


def cmd_search(vault: VaultEngine, args) -> int:
    print_summaries(vault.search_entries(args.query))
    return 0


def cmd_get(vault: VaultEngine, args) -> int:
    entry = vault.get_entry(args.name)
    print(f"\n{SEP_LG}")
    print(f"Name         : {entry.name}")
    if entry.username:
        print(f"Username     : {entry.username}")
    if entry.notes:
        print("Notes")
        print(f"{SEP_SM}\n{entry.notes}\n{SEP_SM}")
    print(f"Created      : {fmt_time(entry.created_at)}")
    print(f"Last Edited  : {fmt_time(entry.updated_at)}")
    print(SEP_LG)
    reveal(args, vault.get_password(args.name))
    return 0


def cmd_add(vault: VaultEngine, args) -> int:
    if args.generate:
        password = vault.generate_password(args.length, charset_from_args(args))
    else:
        password = ask_entry_password(f"Password for {args.name}: ")
        if password is None:
            return 1
    vault.add_entry(args.name, args.username, password, args.notes)
    print(f"Added {args.name}.")
    if args.generate:
        reveal(args, password)
    return 0


def cmd_change(vault: VaultEngine, args) -> int:
    password = None
    if args.password:
        password = ask_entry_password(f"New password for {args.name}: ")
        if password is None:
            return 1
    vault.update_entry(args.name, username=args.username, password=password, notes=args.notes)
    print(f"Updated {args.name}.")
    return 0


def cmd_delete(vault: VaultEngine, args) -> int:
    vault.remove_entry(args.name)
    print(f"Deleted {args.name}.")
    return 0


def cmd_rename(vault: VaultEngine, args) -> int:
    vault.rename_entry(args.old, args.new)
    print(f"Renamed {args.old} to {args.new}.")
    return 0


def cmd_generate(vault: VaultEngine, args) -> int:
    reveal(args, vault.generate_password(args.length, charset_from_args(args)))
    return 0


def cmd_regenerate(vault: VaultEngine, args) -> int:
    password = vault.regenerate_password(args.name, args.length, charset_from_args(args))
    print(f"New password generated for {args.name}.")
    reveal(args, password)
    return 0


def cmd_change_master_password(vault: VaultEngine, args) -> int:
    new_pw = ask_new_passphrase()
    if new_pw is None:
        return 1
    vault.change_passphrase(new_pw)
    print("Master password changed successfully!")
    return 0


COMMANDS = {
    "list": cmd_list,
    "search": cmd_search,
    "get": cmd_get,
    "add": cmd_add,
    "change": cmd_change,
    "delete": cmd_delete,
    "rename": cmd_rename,
    "generate": cmd_generate,
    "regenerate": cmd_regenerate,
    "change-master-password": cmd_change_master_password,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="passvault",
                                     description="A local, offline password vault.")
    parser.add_argument("-f", "--file", type=Path, default=VAULT_FILE,
                        help=f"vault file (default: {VAULT_FILE})")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    def gen_opts(p):
        p.add_argument("-l", "--length", type=int, default=None,
                       help=f"generated password length (default: {PASS_DEFAULTS['length']})")
        p.add_argument("-a", "--alnum", action="store_true",
                       help="only letters and digits in generated passwords")

    def show_opt(p):
        p.add_argument("-s", "--show", action="store_true",
                       help="print the password instead of copying it")

    sub.add_parser("init", help="create a new vault")
    sub.add_parser("list", help="list all entries")

    p = sub.add_parser("search", help="search entries by name, username or notes")
    p.add_argument("query")

    p = sub.add_parser("get", help="retrieve a password")
    p.add_argument("name")
    show_opt(p)

    p = sub.add_parser("add", help="add a new entry")
    p.add_argument("name")
    p.add_argument("-u", "--username", default="")
    p.add_argument("-n", "--notes", default=None)
    p.add_argument("-g", "--generate", action="store_true",
                   help="generate the password instead of typing it")
    gen_opts(p)
    show_opt(p)

    p = sub.add_parser("change", help="edit an entry")
    p.add_argument("name")
    p.add_argument("-u", "--username", default=None)
    p.add_argument("-n", "--notes", default=None)
    p.add_argument("-p", "--password", action="store_true", help="type a new password")

    p = sub.add_parser("delete", help="delete an entry")
    p.add_argument("name")

    p = sub.add_parser("rename", help="rename an entry")
    p.add_argument("old")
    p.add_argument("new")

    p = sub.add_parser("generate", help="generate a password without storing it")
    gen_opts(p)
    show_opt(p)

    p = sub.add_parser("regenerate", help="replace an entry's password with a generated one")
    p.add_argument("name")
    gen_opts(p)
    show_opt(p)

    sub.add_parser("change-master-password", help="change the master password")
    parser.set_defaults(copied=None)
    return parser


# ==============================================================
# MAIN
# ==============================================================
def run(args) -> int:
    if args.command == "init":
        pw = ask_new_passphrase("Choose a master password: ")
        if pw is None:
            return 1
        with create(args.file, pw) as vault:
            vault.save()
        print(f"Created new vault at {args.file}")
        return 0

    pw = getpass.getpass("Master password: ")
    try:
        with unlock(args.file, pw) as vault:
            del pw
            rc = COMMANDS[args.command](vault, args)
            if rc == 0 and vault.is_dirty:
                vault.save()
    except BaseException:
        if args.copied is not None:
            clear_clipboard(args.copied)
        raise

    # must finish before the process exits
    if args.copied is not None:
        print(f"Copied to clipboard. Press Enter to clear it now "
              f"(auto-clears in {CLIPBOARD_TIMEOUT}s).", flush=True)
        wait_and_clear(args.copied, CLIPBOARD_TIMEOUT)
    return rc


def main(argv=None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except VaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        logger.error(stamp(f"{args.command} failed: {type(e).__name__}: {e}"))
        return 1
    except KeyboardInterrupt:
        print("\nAborted.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
