import logging
import sys
import threading

import pyperclip

from passvault.config.config_vault import CLIPBOARD_TIMEOUT
from passvault.config.logging_config import stamp

logger = logging.getLogger(__name__)


def copy_to_clipboard(text: str) -> bool:
    """
    Copy a secret to the system clipboard.

    Pair with `wait_and_clear` so the secret does not outlive the command.

    Returns:
        True if the text was copied, False if no clipboard is available.
    """
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        logger.error(stamp(f"Clipboard unavailable: {e}"))
        return False
    return True


def wait_and_clear(text: str, timeout: int = CLIPBOARD_TIMEOUT) -> None:
    """
    Block until Enter is pressed or `timeout` seconds pass, then clear
    the clipboard.

    The clipboard is only cleared if it still holds `text`, so anything
    the user copied in the meantime survives. Clearing also happens on
    Ctrl-C.

    Args:
        text: The secret previously copied.
        timeout: Maximum seconds to wait. 0 or less clears immediately.
    """
    try:
        if timeout > 0:
            pressed = threading.Event()
            threading.Thread(target=_wait_for_enter, args=(pressed,), daemon=True).start()
            pressed.wait(timeout)
    finally:
        clear_clipboard(text)


def clear_clipboard(text: str) -> bool:
    """Empty the clipboard if it still holds `text`. True if it was cleared."""
    try:
        if pyperclip.paste() != text:
            return False
        pyperclip.copy("")
    except pyperclip.PyperclipException as e:
        logger.error(stamp(f"Could not clear clipboard: {e}"))
        return False
    return True


def _wait_for_enter(pressed: threading.Event) -> None:
    try:
        line = sys.stdin.readline()
    except (OSError, ValueError) as e:
        # no usable stdin; the caller falls back to the timeout
        logger.info(stamp(f"Cannot read stdin while holding clipboard: {e}"))
        return
    # "" means EOF, not Enter
    if line:
        pressed.set()
