from __future__ import annotations

from termcolor import colored


def ok(msg: str) -> None:
    print(f"{colored('[+] ', 'green')}{msg}")


def info(msg: str) -> None:
    print(f"{colored('[*] ', 'blue')}{msg}")


def warn(msg: str) -> None:
    print(f"{colored('[-] ', 'yellow')}{msg}")


def error(msg: str) -> None:
    print(f"{colored('[-] ', 'red')}{msg}")
