"""Read signed-in session cookies out of locally installed browsers."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Dict, Iterable

import browser_cookie3

from usagewatch.core.exceptions import (
    BrowserNotFoundError,
    DecryptionFailedError,
    StoreLockedError,
)

logger = logging.getLogger("usagewatch.browser")

SUPPORTED_BROWSERS = (
    "chrome",
    "chromium",
    "brave",
    "edge",
    "firefox",
    "librewolf",
    "opera",
    "vivaldi",
    "safari",
)


@dataclass
class CookieBundle:
    """Decrypted cookies for one domain. Call :meth:`clear` when done."""

    browser: str
    domain: str
    values: Dict[str, str] = field(default_factory=dict, repr=False)

    def __bool__(self) -> bool:
        return bool(self.values)

    def get(self, name: str) -> str | None:
        return self.values.get(name)

    def header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.values.items())

    def clear(self) -> None:
        for name in list(self.values):
            self.values[name] = ""
        self.values.clear()


def available_browsers() -> list[str]:
    return [name for name in SUPPORTED_BROWSERS if callable(getattr(browser_cookie3, name, None))]


def extract(browser: str, domain: str, names: Iterable[str]) -> CookieBundle:
    """Return the named cookies for ``domain`` from ``browser``'s store.

    Only cookies listed in ``names`` are kept; an empty ``names`` keeps every
    cookie for the domain. Single shot: a locked store raises
    :class:`StoreLockedError` and the caller decides whether to retry.
    """

    loader = getattr(browser_cookie3, browser, None)
    if not callable(loader):
        raise BrowserNotFoundError(browser, f"Unsupported browser: {browser}")

    wanted = set(names)
    try:
        jar = loader(domain_name=domain)
    except browser_cookie3.BrowserCookieError as exc:
        text = str(exc).lower()
        if "decrypt" in text or "keyring" in text or "keychain" in text:
            raise DecryptionFailedError(browser, str(exc)) from exc
        raise BrowserNotFoundError(browser, str(exc)) from exc
    except sqlite3.OperationalError as exc:
        if "locked" in str(exc).lower():
            raise StoreLockedError(browser) from exc
        raise DecryptionFailedError(browser, str(exc)) from exc
    except PermissionError as exc:
        raise StoreLockedError(browser, "Cookie store is not readable right now") from exc
    except FileNotFoundError as exc:
        raise BrowserNotFoundError(browser) from exc
    except (ValueError, UnicodeDecodeError) as exc:
        raise DecryptionFailedError(browser, type(exc).__name__) from exc

    values: Dict[str, str] = {}
    for cookie in jar:
        if wanted and cookie.name not in wanted:
            continue
        if cookie.value is None:
            continue
        values[cookie.name] = cookie.value

    logger.debug(
        "Cookies extracted",
        extra={
            "event": "cookies_extracted",
            "browser": browser,
            "domain": domain,
            "cookie_names": sorted(values),
        },
    )
    return CookieBundle(browser=browser, domain=domain, values=values)


__all__ = ["CookieBundle", "SUPPORTED_BROWSERS", "available_browsers", "extract"]
